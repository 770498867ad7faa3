from typing import Optional

from gensy.errors import ProviderFatalError
from gensy.providers.base import BaseProvider, JobState, ProviderJobStatus

COMPLETED_STATUSES = ("completed", "success")
FAILED_STATUSES = ("failed", "error")


class MiniMaxProvider(BaseProvider):
    name = "minimax"
    display_name = "MiniMax"

    def __init__(self, api_key: str, endpoint: str = "https://api.minimax.io/v1", **kwargs):
        super().__init__(api_key, **kwargs)
        self.endpoint = endpoint.rstrip("/")

    async def get_status(self, external_job_id: str, metadata: Optional[dict] = None) -> ProviderJobStatus:
        data = await self._get_json(
            f"{self.endpoint}/video_generation/{external_job_id}",
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        status = str(data.get("status") or "").lower()

        if status in COMPLETED_STATUSES:
            output_url = data.get("video_url") or data.get("download_url")
            if not output_url:
                raise ProviderFatalError("NO_OUTPUT", "MiniMax returned no video URL", raw_response=data)
            return ProviderJobStatus(
                state=JobState.COMPLETED,
                progress=100,
                output_url=output_url,
                external_status=status,
                raw_response=data,
            )

        if status in FAILED_STATUSES:
            raise ProviderFatalError(
                "MINIMAX_FAILED", str(data.get("error") or "Video generation failed"), raw_response=data
            )

        # pending, processing and anything new are treated as still running
        return ProviderJobStatus(
            state=JobState.PROCESSING,
            progress=self._progress(data.get("progress")),
            external_status=status or None,
            raw_response=data,
        )
