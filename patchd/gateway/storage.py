"""Binary object storage: upload, public URL, list, remove and download by path."""
import io
import logging
from typing import Protocol
from urllib.parse import unquote, urlparse

import aioboto3
import httpx
from botocore.config import Config
from PIL import Image

from patchd.config import settings
from patchd.errors import NotFoundError, ValidationError
from patchd.gateway.errors import backend_errors

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}

EXTENSIONS = {
    "PNG": "png",
    "JPEG": "jpg",
    "WEBP": "webp",
}


class ObjectStorage(Protocol):
    bucket: str

    async def upload(self, path: str, data: bytes, content_type: str) -> None: ...

    async def remove(self, paths: list[str]) -> None: ...

    async def list(self, folder: str) -> list[str]: ...

    def public_url(self, path: str) -> str: ...


def public_url_for(base_url: str, bucket: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{bucket}/{path.lstrip('/')}"


def extract_storage_path(url: str, bucket: str) -> str | None:
    """Return the object path after the bucket segment of a public URL."""
    segments = [unquote(s) for s in urlparse(url).path.split("/") if s]
    if bucket not in segments:
        return None
    path = segments[segments.index(bucket) + 1:]
    return "/".join(path) or None


def transcode_image(data: bytes | Image.Image, image_format: str | None = None) -> bytes:
    """Re-encode arbitrary image input into the configured storage format."""
    image_format = (image_format or settings.IMAGE_FORMAT).upper()
    if image_format not in CONTENT_TYPES:
        raise ValueError(f"Unsupported image format: {image_format}")

    image = data if isinstance(data, Image.Image) else Image.open(io.BytesIO(data))
    if image_format == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    buffer = io.BytesIO()
    save_kwargs = {"optimize": True}
    if image_format in ("JPEG", "WEBP"):
        save_kwargs["quality"] = 85
    image.save(buffer, format=image_format, **save_kwargs)
    return buffer.getvalue()


class S3ObjectStorage:
    """S3-compatible bucket (R2, AWS, MinIO) accessed through aioboto3."""

    def __init__(
        self,
        bucket: str | None = None,
        endpoint_url: str | None = None,
        public_base_url: str | None = None,
    ):
        self.bucket = bucket or settings.STORAGE_BUCKET
        self.endpoint_url = endpoint_url or settings.STORAGE_ENDPOINT_URL
        self.public_base_url = public_base_url or settings.STORAGE_PUBLIC_URL
        self.session = aioboto3.Session(
            aws_access_key_id=settings.STORAGE_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.STORAGE_SECRET_ACCESS_KEY or None,
            region_name=settings.STORAGE_REGION_NAME,
        )

    def _client(self):
        return self.session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            config=Config(signature_version="s3v4"),
        )

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        async with self._client() as s3:
            await s3.put_object(
                Bucket=self.bucket, Key=path, Body=data, ContentType=content_type
            )

    async def remove(self, paths: list[str]) -> None:
        if not paths:
            return
        async with self._client() as s3:
            await s3.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": p} for p in paths], "Quiet": True},
            )

    async def list(self, folder: str) -> list[str]:
        prefix = folder.rstrip("/") + "/"
        names = []
        async with self._client() as s3:
            paginator = s3.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(prefix):]
                    if name and "/" not in name:
                        names.append(name)
        return names

    def public_url(self, path: str) -> str:
        return public_url_for(self.public_base_url, self.bucket, path)


class StorageGateway:
    """Image-aware wrapper around an ObjectStorage bucket."""

    def __init__(
        self,
        storage: ObjectStorage,
        http_client: httpx.AsyncClient | None = None,
        image_format: str | None = None,
    ):
        self.storage = storage
        self.image_format = (image_format or settings.IMAGE_FORMAT).upper()
        self._http_client = http_client

    @property
    def bucket(self) -> str:
        return self.storage.bucket

    @property
    def extension(self) -> str:
        return EXTENSIONS[self.image_format]

    async def upload_image(
        self, data: bytes | Image.Image, folder: str, filename: str
    ) -> str:
        """Transcode, store at ``folder/filename`` and return the public URL."""
        try:
            encoded = transcode_image(data, self.image_format)
        except (OSError, ValueError) as exc:
            raise ValidationError("Failed to convert image to data") from exc

        path = f"{folder.strip('/')}/{filename}"
        async with backend_errors(f"upload {path}"):
            await self.storage.upload(path, encoded, CONTENT_TYPES[self.image_format])
        return self.storage.public_url(path)

    def public_url(self, path: str) -> str:
        return self.storage.public_url(path)

    def path_from_url(self, url: str, folder: str | None = None) -> str | None:
        """Object path of a public URL, or None when it lies outside ``folder``."""
        path = extract_storage_path(url, self.storage.bucket)
        if path is None or (folder and not path.startswith(folder.strip("/") + "/")):
            return None
        return path

    async def list_files(self, folder: str) -> list[str]:
        async with backend_errors(f"list {folder}"):
            return await self.storage.list(folder)

    async def remove(self, path: str) -> None:
        async with backend_errors(f"remove {path}"):
            await self.storage.remove([path])

    async def download(self, url: str) -> bytes:
        should_close = False
        http_client = self._http_client
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=10.0)
            should_close = True
        try:
            async with backend_errors(f"download {url}"):
                response = await http_client.get(url)
                if response.status_code == 404:
                    raise NotFoundError(f"No object at {url}")
                response.raise_for_status()
                return response.content
        finally:
            if should_close:
                await http_client.aclose()
