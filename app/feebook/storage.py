from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from werkzeug.utils import secure_filename

from app.feebook.constants import UPLOAD_CONTENT_TYPES

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    url_prefix: str = "/api/v1/files"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Refusing key outside storage root: {key!r}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        return p.open("rb")

    def exists(self, key: str) -> bool:
        try:
            return self._path(key).is_file()
        except StorageError:
            return False

    def public_url(self, key: str) -> str:
        return f"{self.url_prefix}/{key.lstrip('/')}"


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str = ""

    def _client(self):
        try:
            import boto3  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise StorageError("boto3 required for S3 storage. Install boto3.") from e
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, ContentLength=len(data), **extra)

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint:
            return f"https://{self.bucket}.{self.endpoint}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "ap-south-1").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            public_base_url=(config.get("S3_PUBLIC_BASE_URL") or "").strip(),
        )
    # default local
    root = Path(config.get("LOCAL_STORAGE_ROOT") or "storage")
    if not root.is_absolute():
        root = Path.cwd() / root
    return LocalStorage(root=root)


@dataclass(frozen=True)
class UploadResult:
    key: str
    url: str
    content_type: str
    size_bytes: int

    def as_dict(self) -> dict:
        return {"url": self.url, "key": self.key, "contentType": self.content_type}


def guess_content_type(ext: str, declared: str | None = None) -> str:
    if declared and declared != "application/octet-stream":
        return declared
    return UPLOAD_CONTENT_TYPES.get((ext or "").lower(), "application/octet-stream")


def split_filename(filename: str) -> tuple[str, str]:
    """'report.final.pdf' -> ('report.final', 'pdf'); a name without a dot gets ext 'bin'."""
    name = (filename or "").strip()
    if "." not in name:
        return name, "bin"
    stem, ext = name.rsplit(".", 1)
    return stem, (ext or "bin")


def build_upload_key(folder_path: str | None, file_name: str | None, file_ext: str) -> str:
    stem = secure_filename(file_name or "") or uuid.uuid4().hex
    ext = secure_filename(file_ext or "").lower() or "bin"
    folder = "/".join(secure_filename(part) for part in (folder_path or "").strip("/").split("/") if secure_filename(part))
    return f"{folder}/{stem}.{ext}" if folder else f"{stem}.{ext}"


def upload_file(
    storage: Storage,
    data: bytes,
    *,
    file_ext: str,
    folder_path: str | None = None,
    file_name: str | None = None,
    content_type: str | None = None,
) -> UploadResult:
    """Store `data` at `folder_path/file_name.file_ext` (random name when none) and return its public URL."""
    key = build_upload_key(folder_path, file_name, file_ext)
    ctype = guess_content_type(file_ext, content_type)
    try:
        storage.put_bytes(key, data, content_type=ctype)
    except StorageError:
        raise
    except Exception as e:
        logger.error("Upload failed for key=%s: %s", key, e)
        raise StorageError(f"Failed to upload file: {e}") from e
    logger.info("File uploaded successfully: %s (%s bytes)", key, len(data))
    return UploadResult(key=key, url=storage.public_url(key), content_type=ctype, size_bytes=len(data))
