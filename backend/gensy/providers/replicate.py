from enum import Enum
from typing import Any, Optional

from gensy.errors import ProviderFatalError
from gensy.providers.base import BaseProvider, JobState, ProviderJobStatus


class ReplicateStatus(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


def _first_output(output: Any) -> Optional[str]:
    if isinstance(output, list):
        return output[0] if output else None
    return output


class ReplicateProvider(BaseProvider):
    name = "replicate"
    display_name = "Replicate"
    progress_scale = 1

    BASE_URL = "https://api.replicate.com/v1"

    async def get_status(self, external_job_id: str, metadata: Optional[dict] = None) -> ProviderJobStatus:
        data = await self._get_json(
            f"{self.BASE_URL}/predictions/{external_job_id}",
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        status = data.get("status")

        if status == ReplicateStatus.SUCCEEDED:
            output_url = _first_output(data.get("output"))
            if not output_url:
                raise ProviderFatalError("NO_OUTPUT", "Replicate returned no output", raw_response=data)
            return ProviderJobStatus(
                state=JobState.COMPLETED,
                progress=100,
                output_url=output_url,
                external_status=status,
                raw_response=data,
            )

        if status == ReplicateStatus.FAILED:
            raise ProviderFatalError(
                "REPLICATE_FAILED", str(data.get("error") or "Prediction failed"), raw_response=data
            )
        if status == ReplicateStatus.CANCELED:
            raise ProviderFatalError("CANCELED", "Prediction was canceled", raw_response=data)

        return ProviderJobStatus(
            state=JobState.PROCESSING,
            progress=self._progress(data.get("progress")),
            external_status=status,
            raw_response=data,
        )
