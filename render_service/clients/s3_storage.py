from __future__ import annotations

import hashlib
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode
from uuid import uuid4

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from render_service.errors import NotFoundError, StorageError

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
ALL_USERS_URI = "http://acs.amazonaws.com/groups/global/AllUsers"


class S3StorageClient:
    """Bucket-scoped object storage.

    Falls back to an in-process dictionary when credentials are not
    configured, which is what local runs and the test-suite use.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None,
        secret_key: str | None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        timeout: float = 30.0,
        addressing_style: str | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.access_key = (access_key or "").strip()
        self.secret_key = (secret_key or "").strip()
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.region_name = (region_name or "").strip() or None
        self.public_url_base = (public_url or "").rstrip("/")
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)
        self._memory: Dict[str, bytes] = {}
        self._memory_public: set[str] = set()
        self._client = None
        if self.is_configured():
            session = boto3.session.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region_name,
            )
            config = BotoConfig(
                s3={"addressing_style": (addressing_style or "virtual").lower()},
                connect_timeout=timeout,
                read_timeout=timeout,
            )
            self._client = session.client("s3", endpoint_url=self.endpoint_url, config=config)

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)

    @property
    def mode(self) -> str:
        return "s3" if self._client is not None else "memory"

    def upload_bytes(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        key = self._normalize_path(path)
        if self._client is None:
            self._memory[key] = content
            return key
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                Metadata={"md5": hashlib.md5(content).hexdigest()},
            )
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - AWS error surface
            raise StorageError(f"upload failed for {key}", details=str(exc)) from exc
        return key

    def upload_file(self, path: str, local_path: str, content_type: str = "video/mp4") -> str:
        with open(local_path, "rb") as f:
            return self.upload_bytes(path, f.read(), content_type)

    def download_bytes(self, path: str) -> bytes:
        key = self._normalize_path(path)
        if self._client is None:
            if key not in self._memory:
                raise NotFoundError(f"object not found: {key}")
            return self._memory[key]
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            body = response.get("Body")
            if body is None:
                return b""
            return body.read()
        except ClientError as exc:
            if self._is_missing(exc):
                raise NotFoundError(f"object not found: {key}") from exc
            raise StorageError(f"download failed for {key}", details=str(exc)) from exc
        except BotoCoreError as exc:  # pragma: no cover
            raise StorageError(f"download failed for {key}", details=str(exc)) from exc

    def download_to(self, path: str, local_path: str) -> str:
        data = self.download_bytes(path)
        with open(local_path, "wb") as f:
            f.write(data)
        return local_path

    def list_files(self, prefix: str | None = None) -> List[dict[str, Any]]:
        key_prefix = self._normalize_path(prefix) if prefix else ""
        if self._client is None:
            return self._list_memory(key_prefix)
        contents: List[dict[str, Any]] = []
        kwargs: Dict[str, Any] = {"Bucket": self.bucket}
        if key_prefix:
            kwargs["Prefix"] = key_prefix
        continuation_token: str | None = None
        while True:
            if continuation_token:
                kwargs["ContinuationToken"] = continuation_token
            try:
                response = self._client.list_objects_v2(**kwargs)
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover
                raise StorageError(f"list failed for {key_prefix}", details=str(exc)) from exc
            for obj in response.get("Contents", []):
                key = obj.get("Key")
                if not key:
                    continue
                contents.append(
                    {
                        "key": key,
                        "size": obj.get("Size"),
                        "last_modified": obj.get("LastModified"),
                    }
                )
            if not response.get("IsTruncated"):
                break
            continuation_token = response.get("NextContinuationToken")
        return contents

    def exists(self, path: str) -> bool:
        return self.head(path) is not None

    def head(self, path: str) -> dict[str, Any] | None:
        key = self._normalize_path(path)
        if self._client is None:
            if key not in self._memory:
                return None
            data = self._memory[key]
            return {"key": key, "size": len(data), "md5": hashlib.md5(data).hexdigest()}
        try:
            response = self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._is_missing(exc):
                return None
            raise StorageError(f"head failed for {key}", details=str(exc)) from exc
        except BotoCoreError as exc:  # pragma: no cover
            raise StorageError(f"head failed for {key}", details=str(exc)) from exc
        metadata = response.get("Metadata") or {}
        md5 = metadata.get("md5") or (response.get("ETag") or "").strip('"')
        return {"key": key, "size": response.get("ContentLength"), "md5": md5}

    def checksum(self, path: str) -> str:
        """Content checksum, or an empty string when the object cannot be inspected."""
        try:
            info = self.head(path)
        except StorageError:
            self.log.warning("checksum lookup failed", extra={"bucket": self.bucket, "key": path})
            return ""
        if not info:
            return ""
        return info.get("md5") or ""

    def copy(self, source: str, destination: str) -> str:
        src = self._normalize_path(source)
        dst = self._normalize_path(destination)
        if self._client is None:
            if src not in self._memory:
                raise NotFoundError(f"object not found: {src}")
            self._memory[dst] = self._memory[src]
            return dst
        try:
            self._client.copy_object(
                Bucket=self.bucket,
                Key=dst,
                CopySource={"Bucket": self.bucket, "Key": src},
            )
        except ClientError as exc:
            if self._is_missing(exc):
                raise NotFoundError(f"object not found: {src}") from exc
            raise StorageError(f"copy failed {src} -> {dst}", details=str(exc)) from exc
        except BotoCoreError as exc:  # pragma: no cover
            raise StorageError(f"copy failed {src} -> {dst}", details=str(exc)) from exc
        return dst

    def delete(self, path: str) -> bool:
        key = self._normalize_path(path)
        if self._client is None:
            self._memory_public.discard(key)
            return self._memory.pop(key, None) is not None
        if not self.exists(key):
            return False
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise StorageError(f"delete failed for {key}", details=str(exc)) from exc
        return True

    def make_public(self, path: str) -> str:
        key = self._normalize_path(path)
        if self._client is None:
            if key not in self._memory:
                raise NotFoundError(f"object not found: {key}")
            self._memory_public.add(key)
            return self.public_url(key)
        try:
            self._client.put_object_acl(Bucket=self.bucket, Key=key, ACL="public-read")
        except ClientError as exc:
            if self._is_missing(exc):
                raise NotFoundError(f"object not found: {key}") from exc
            raise StorageError(f"make public failed for {key}", details=str(exc)) from exc
        except BotoCoreError as exc:  # pragma: no cover
            raise StorageError(f"make public failed for {key}", details=str(exc)) from exc
        return self.public_url(key)

    def make_private(self, path: str) -> None:
        key = self._normalize_path(path)
        if self._client is None:
            if key not in self._memory:
                raise NotFoundError(f"object not found: {key}")
            self._memory_public.discard(key)
            return
        try:
            self._client.put_object_acl(Bucket=self.bucket, Key=key, ACL="private")
        except ClientError as exc:
            if self._is_missing(exc):
                raise NotFoundError(f"object not found: {key}") from exc
            raise StorageError(f"make private failed for {key}", details=str(exc)) from exc
        except BotoCoreError as exc:  # pragma: no cover
            raise StorageError(f"make private failed for {key}", details=str(exc)) from exc

    def is_public(self, path: str) -> bool:
        key = self._normalize_path(path)
        if self._client is None:
            return key in self._memory_public
        try:
            acl = self._client.get_object_acl(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._is_missing(exc):
                return False
            raise StorageError(f"acl lookup failed for {key}", details=str(exc)) from exc
        except BotoCoreError as exc:  # pragma: no cover
            raise StorageError(f"acl lookup failed for {key}", details=str(exc)) from exc
        for grant in acl.get("Grants", []):
            grantee = grant.get("Grantee", {})
            if grantee.get("URI") == ALL_USERS_URI and grant.get("Permission") in ("READ", "FULL_CONTROL"):
                return True
        return False

    def signed_url(self, path: str, expires_in: int) -> str:
        key = self._normalize_path(path)
        if self._client is None:
            query = urlencode(
                {
                    "X-Amz-Expires": expires_in,
                    "X-Amz-Date": int(time.time()),
                    "X-Amz-Signature": uuid4().hex,
                }
            )
            return f"{self.public_url(key)}?{query}"
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise StorageError(f"signing failed for {key}", details=str(exc)) from exc

    def public_url(self, path: str) -> str:
        clean = self._normalize_path(path)
        if self.public_url_base:
            return f"{self.public_url_base}/{clean}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{clean}"
        return f"https://{self.bucket}.s3.amazonaws.com/{clean}"

    def _list_memory(self, prefix: str) -> List[dict[str, Any]]:
        items: List[dict[str, Any]] = []
        for key, data in sorted(self._memory.items()):
            if prefix and not key.startswith(prefix):
                continue
            items.append(
                {
                    "key": key,
                    "size": len(data),
                    "last_modified": datetime.utcnow(),
                }
            )
        return items

    def _is_missing(self, exc: ClientError) -> bool:
        code = str(exc.response.get("Error", {}).get("Code", ""))
        return code in _MISSING_CODES

    def _normalize_path(self, path: str | None) -> str:
        if not path:
            return ""
        return "/".join(part for part in path.strip().split("/") if part)
