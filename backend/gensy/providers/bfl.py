from typing import Optional

from gensy.errors import ProviderFatalError
from gensy.providers.base import BaseProvider, JobState, ProviderJobStatus

FAILED_STATUSES = ("Error", "Failed", "Content Moderated", "Request Moderated")


class BFLProvider(BaseProvider):
    """Black Forest Labs (FLUX) results API."""

    name = "bfl"
    display_name = "Black Forest Labs"
    progress_scale = 1

    def __init__(self, api_key: str, endpoint: str = "https://api.bfl.ml/v1", **kwargs):
        super().__init__(api_key, **kwargs)
        self.endpoint = endpoint.rstrip("/")

    async def get_status(self, external_job_id: str, metadata: Optional[dict] = None) -> ProviderJobStatus:
        polling_url = (metadata or {}).get("pollingUrl")
        if polling_url:
            data = await self._get_json(polling_url, headers={"x-key": self.api_key})
        else:
            data = await self._get_json(
                f"{self.endpoint}/get_result",
                headers={"x-key": self.api_key},
                params={"id": external_job_id},
            )
        status = data.get("status")

        if status == "Ready":
            sample = (data.get("result") or {}).get("sample")
            if not sample:
                raise ProviderFatalError("NO_OUTPUT", "BFL result has no sample", raw_response=data)
            return ProviderJobStatus(
                state=JobState.COMPLETED,
                progress=100,
                output_url=sample,
                external_status=status,
                raw_response=data,
            )

        if status in FAILED_STATUSES:
            raise ProviderFatalError("BFL_FAILED", f"Generation failed: {status}", raw_response=data)

        # Pending and "Task not found" (not yet visible) keep the job running
        return ProviderJobStatus(
            state=JobState.PROCESSING,
            progress=self._progress(data.get("progress")),
            external_status=status,
            raw_response=data,
        )
