import asyncio
import logging
from typing import Optional

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
from google.oauth2 import service_account

from gensy.errors import ProviderFatalError, ProviderTransientError
from gensy.providers.base import BaseProvider, JobState, ProviderJobStatus

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


def gcs_to_https(uri: str) -> str:
    """gs://bucket/path -> https://storage.googleapis.com/bucket/path"""
    if uri.startswith("gs://"):
        return f"https://storage.googleapis.com/{uri[len('gs://'):]}"
    return uri


class GoogleVeoProvider(BaseProvider):
    """Vertex AI long-running operations behind Veo video generations.

    ``external_job_id`` is either the full operation name or its trailing id,
    in which case the name is rebuilt from the project, location and model.
    """

    name = "google-veo"
    display_name = "Google Veo"

    def __init__(
        self,
        project_id: str,
        location: str = "us-central1",
        model: str = "veo-2.0-generate-001",
        credentials_file: str = "",
        credentials=None,
        **kwargs,
    ):
        super().__init__(api_key="", **kwargs)
        self.project_id = project_id
        self.location = location
        self.model = model
        self.credentials_file = credentials_file
        self._credentials = credentials

    def _load_credentials(self):
        if self.credentials_file:
            return service_account.Credentials.from_service_account_file(self.credentials_file, scopes=SCOPES)
        credentials, _ = google.auth.default(scopes=SCOPES)
        return credentials

    async def _access_token(self) -> str:
        try:
            if self._credentials is None:
                self._credentials = self._load_credentials()
            if not self._credentials.valid:
                # google-auth refreshes synchronously
                await asyncio.to_thread(self._credentials.refresh, google.auth.transport.requests.Request())
        except google.auth.exceptions.GoogleAuthError as e:
            logger.warning("[%s] could not obtain an access token: %s", self.display_name, e)
            raise ProviderTransientError(f"{self.display_name} authentication failed: {e}") from e
        return self._credentials.token

    def operation_name(self, external_job_id: str, metadata: Optional[dict] = None) -> str:
        name = (metadata or {}).get("operationName") or external_job_id
        if "/" in name:
            return name
        return (
            f"projects/{self.project_id}/locations/{self.location}"
            f"/publishers/google/models/{self.model}/operations/{name}"
        )

    async def get_status(self, external_job_id: str, metadata: Optional[dict] = None) -> ProviderJobStatus:
        operation = self.operation_name(external_job_id, metadata)
        # projects/{p}/locations/{location}/...
        parts = operation.split("/")
        location = parts[3] if len(parts) > 3 else self.location

        token = await self._access_token()
        data = await self._get_json(
            f"https://{location}-aiplatform.googleapis.com/v1/{operation}",
            headers={"Authorization": f"Bearer {token}", "X-Goog-User-Project": self.project_id},
        )

        if not data.get("done"):
            return ProviderJobStatus(
                state=JobState.PROCESSING,
                progress=self._progress((data.get("metadata") or {}).get("progressPercent")),
                external_status="running",
                raw_response=data,
            )

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderFatalError("VEO_FAILED", message or "Operation failed", raw_response=data)

        response = data.get("response") or {}
        for video in response.get("videos") or []:
            if isinstance(video, dict) and video.get("gcsUri"):
                return ProviderJobStatus(
                    state=JobState.COMPLETED,
                    progress=100,
                    output_url=gcs_to_https(video["gcsUri"]),
                    external_status="done",
                    raw_response=data,
                )

        if response.get("raiMediaFilteredCount"):
            raise ProviderFatalError("CONTENT_FILTERED", "Video was blocked by safety filters", raw_response=data)
        # Inline base64 videos are only returned when no storageUri was given at submission
        raise ProviderFatalError("NO_OUTPUT", "Veo operation finished without a Cloud Storage video", raw_response=data)
