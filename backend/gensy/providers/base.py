import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from gensy.errors import ProviderTransientError

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass
class ProviderJobStatus:
    state: JobState
    progress: Optional[int] = None  # 0-100
    output_url: Optional[str] = None
    external_status: Optional[str] = None
    raw_response: Optional[dict] = None


class BaseProvider(ABC):
    """Reads the state of a job that was submitted to an AI provider.

    ``get_status`` returns while the job runs or after it succeeded, raises
    ``ProviderFatalError`` when the provider reports a failure and
    ``ProviderTransientError`` when the provider could not be asked.
    """

    name: str
    display_name: str
    progress_scale: int = 100

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self.config = kwargs

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _get_json(self, url: str, headers: dict, params: Optional[dict] = None) -> dict:
        try:
            async with self._client() as client:
                response = await client.get(url, headers=headers, params=params)
        except httpx.HTTPError as e:
            logger.warning("[%s] status request failed: %s", self.display_name, e)
            raise ProviderTransientError(f"{self.display_name} unreachable: {e}") from e

        if response.status_code != 200:
            logger.warning("[%s] status request returned HTTP %d", self.display_name, response.status_code)
            raise ProviderTransientError(f"{self.display_name} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderTransientError(f"{self.display_name} returned invalid JSON") from e
        if not isinstance(data, dict):
            logger.warning("[%s] status response is not a JSON object", self.display_name)
            raise ProviderTransientError(f"{self.display_name} returned an unexpected response")
        return data

    def _progress(self, value) -> Optional[int]:
        """Percent complete as an int in 0-100, or None when ``value`` is not a number.

        Providers with ``progress_scale = 1`` report a fraction; a value above 1
        from them is already a percentage.
        """
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            return None
        if self.progress_scale == 1 and value <= 1:
            value = value * 100
        return max(0, min(100, int(value)))

    @abstractmethod
    async def get_status(self, external_job_id: str, metadata: Optional[dict] = None) -> ProviderJobStatus:
        pass
