import os
import uuid
import hashlib
import logging
import mimetypes
from datetime import datetime
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

import boto3
import httpx
from botocore.client import Config

from gensy.config import settings
from gensy.models.generation import GenerationType

logger = logging.getLogger(__name__)


class FileCategory(str, Enum):
    IMAGES = "images"
    VIDEOS = "videos"


CATEGORY_BY_TYPE = {
    GenerationType.IMAGE.value: FileCategory.IMAGES,
    GenerationType.UPSCALE.value: FileCategory.IMAGES,
    GenerationType.BATCH.value: FileCategory.IMAGES,
    GenerationType.CONVERSION.value: FileCategory.IMAGES,
    GenerationType.VIDEO.value: FileCategory.VIDEOS,
}


class StorageService:
    """Copies provider outputs into our own bucket before provider URLs expire."""

    def __init__(
        self,
        endpoint_url: str = settings.S3_ENDPOINT,
        public_endpoint: str = settings.S3_PUBLIC_ENDPOINT,
        bucket: str = settings.S3_BUCKET,
        access_key: str = settings.S3_ACCESS_KEY,
        secret_key: str = settings.S3_SECRET_KEY,
        download_timeout: float = 60.0,
    ):
        self.endpoint_url = endpoint_url
        self.public_endpoint = (public_endpoint or endpoint_url).rstrip("/")
        self.bucket = bucket
        self.access_key = access_key
        self.secret_key = secret_key
        self.download_timeout = download_timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                config=Config(signature_version="s3v4"),
            )
        return self._client

    def _get_path(self, user_id: str, category: FileCategory, filename: str) -> str:
        return f"users/{user_id}/{category.value}/{filename}"

    def _generate_filename(self, original_filename: str, content: Optional[bytes] = None) -> str:
        ext = os.path.splitext(original_filename)[1].lower() if original_filename else ""
        unique_id = uuid.uuid4().hex[:12]
        timestamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")

        if content:
            content_hash = hashlib.md5(content[:1024]).hexdigest()[:8]
            return f"{timestamp}_{content_hash}_{unique_id}{ext}"

        return f"{timestamp}_{unique_id}{ext}"

    def public_url(self, key: str) -> str:
        return f"{self.public_endpoint}/{self.bucket}/{key}"

    async def upload_from_url(
        self,
        user_id: str,
        category: FileCategory,
        source_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> dict:
        async with httpx.AsyncClient(timeout=self.download_timeout, transport=transport) as client:
            response = await client.get(source_url)
            response.raise_for_status()
            content = response.content
            content_type = response.headers.get("content-type", "application/octet-stream")

        filename_hint = os.path.basename(urlparse(source_url).path) or "file"
        ext = mimetypes.guess_extension(content_type.split(";")[0]) or ""
        if not os.path.splitext(filename_hint)[1]:
            filename_hint += ext

        filename = self._generate_filename(filename_hint, content)
        key = self._get_path(user_id, category, filename)

        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=content,
            ContentType=content_type,
            Metadata={
                "original_filename": filename_hint,
                "source_url": source_url[:256],
                "user_id": user_id,
                "category": category.value,
            },
        )
        logger.info("[Storage] stored %s (%d bytes) for user %s", key, len(content), user_id)

        return {
            "key": key,
            "url": self.public_url(key),
            "size_bytes": len(content),
            "content_type": content_type,
        }

    async def persist_result(self, user_id: str, generation_type: str, source_url: str) -> str:
        """Store a provider output and return its public URL."""
        category = CATEGORY_BY_TYPE.get(generation_type, FileCategory.IMAGES)
        stored = await self.upload_from_url(user_id, category, source_url)
        return stored["url"]


storage_service = StorageService()
