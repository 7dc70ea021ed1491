from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from common.errors import NetworkError
from common.r2 import R2Config

from .blob_store import BlobStore


_NOT_FOUND_CODES = ("NoSuchKey", "NotFound", "404")

logger = logging.getLogger("pushenv.state.s3_store")


def _error_code(exc: ClientError) -> Optional[str]:
    return exc.response.get("Error", {}).get("Code")


@dataclass
class S3ObjectRef:
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class S3BlobStore(BlobStore):
    """
    S3-compatible blob store (Cloudflare R2 in production).

    Usage
    - Build from environment with `from_env()` or pass an R2Config.
    - Inject `s3` (any object with put_object/get_object/head_object) in tests.
    - Objects are opaque bytes; encryption happens before they reach here.

    Failures other than "not found" surface as `NetworkError`. Requests are
    made once: botocore's own retry loop is disabled so a failed write is
    never replayed behind the caller's back.
    """

    def __init__(
        self,
        *,
        bucket: str,
        s3: Optional[object] = None,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region_name: Optional[str] = None,
        timeout: float = 15.0,
    ) -> None:
        self._bucket = bucket
        self._s3 = s3 or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region_name,
            config=Config(
                signature_version="s3v4",
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"total_max_attempts": 1},
            ),
        )

    # -------- Construction helpers --------
    @classmethod
    def from_config(cls, config: R2Config) -> "S3BlobStore":
        return cls(
            bucket=config.bucket,
            endpoint_url=config.endpoint,
            access_key=config.access_key,
            secret_key=config.secret_key,
            region_name=config.region_name,
            timeout=config.timeout,
        )

    @classmethod
    def from_env(cls) -> "S3BlobStore":
        return cls.from_config(R2Config.from_env())

    def _ref(self, key: str) -> S3ObjectRef:
        return S3ObjectRef(bucket=self._bucket, key=key)

    # -------- Core operations --------
    def put(self, key: str, data: bytes) -> None:
        ref = self._ref(key)
        try:
            self._s3.put_object(
                Bucket=ref.bucket,
                Key=ref.key,
                Body=data,
                ContentType="application/octet-stream",
            )
        except ClientError as e:
            raise NetworkError(f"Upload to {ref} failed: {_error_code(e) or e}") from e
        except BotoCoreError as e:
            raise NetworkError(f"Upload to {ref} failed: {e}") from e
        logger.debug("put %s (%d bytes)", ref, len(data))

    def get(self, key: str) -> Optional[bytes]:
        ref = self._ref(key)
        try:
            resp = self._s3.get_object(Bucket=ref.bucket, Key=ref.key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise NetworkError(f"Download of {ref} failed: {_error_code(e) or e}") from e
        except BotoCoreError as e:
            raise NetworkError(f"Download of {ref} failed: {e}") from e
        return resp["Body"].read()

    def head(self, key: str) -> bool:
        ref = self._ref(key)
        try:
            self._s3.head_object(Bucket=ref.bucket, Key=ref.key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            raise NetworkError(f"Lookup of {ref} failed: {_error_code(e) or e}") from e
        except BotoCoreError as e:
            raise NetworkError(f"Lookup of {ref} failed: {e}") from e
        return True


__all__ = ["S3BlobStore", "S3ObjectRef"]
