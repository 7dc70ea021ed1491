from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

from .errors import ConfigError, NotFoundError


# Environment variable names for the remote store (Cloudflare R2, S3 API)
ENV_ENDPOINT = "R2_ENDPOINT"
ENV_ACCESS_KEY = "R2_ACCESS_KEY"
ENV_SECRET_ACCESS_KEY = "R2_SECRET_ACCESS_KEY"
ENV_BUCKET = "R2_BUCKET"

# Shorter spelling accepted for the secret
FALLBACK_ENV_SECRET_KEY = "R2_SECRET_KEY"

DEFAULT_BUCKET = "pushenv"
DEFAULT_REGION = "auto"

logger = logging.getLogger("pushenv.common.r2")


def _getenv(environ: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    val = environ.get(name)
    return val if val not in (None, "") else default


@dataclass(frozen=True)
class R2Config:
    endpoint: str
    access_key: str
    secret_key: str
    bucket: str = DEFAULT_BUCKET
    region_name: str = DEFAULT_REGION
    timeout: float = 15.0

    def __repr__(self) -> str:
        return f"R2Config(endpoint={self.endpoint!r}, bucket={self.bucket!r}, access_key=<redacted>)"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "R2Config":
        env = os.environ if environ is None else environ
        endpoint = _getenv(env, ENV_ENDPOINT)
        access_key = _getenv(env, ENV_ACCESS_KEY)
        secret_key = _getenv(env, ENV_SECRET_ACCESS_KEY) or _getenv(env, FALLBACK_ENV_SECRET_KEY)
        bucket = _getenv(env, ENV_BUCKET, DEFAULT_BUCKET)
        if not endpoint or not access_key or not secret_key:
            missing = [
                name
                for name, val in [
                    (ENV_ENDPOINT, endpoint),
                    (ENV_ACCESS_KEY, access_key),
                    (ENV_SECRET_ACCESS_KEY, secret_key),
                ]
                if not val
            ]
            raise ConfigError(
                f"Missing required environment variables for the remote store: {', '.join(missing)}"
            )
        return cls(endpoint=endpoint.rstrip("/"), access_key=access_key, secret_key=secret_key, bucket=bucket)


def status_message(environ: Optional[Mapping[str, str]] = None) -> str:
    try:
        cfg = R2Config.from_env(environ)
    except ConfigError:
        return (
            f"R2 not configured (set {ENV_ACCESS_KEY}, {ENV_SECRET_ACCESS_KEY}, "
            f"{ENV_ENDPOINT}, {ENV_BUCKET})"
        )
    return f"R2 configured: bucket '{cfg.bucket}'"


def probe_bucket(config: R2Config, *, client: Optional[httpx.Client] = None) -> bool:
    """Check that the bucket answers at `<endpoint>/<bucket>`.

    Returns True when reachable. Raises ConfigError on 403 and NotFoundError
    on 404. Transport failures are logged and do not fail the probe, since the
    store may still be usable through the S3 client.
    """
    owns_client = client is None
    http = client or httpx.Client(timeout=config.timeout)
    url = f"{config.endpoint}/{config.bucket}"
    try:
        resp = http.head(url)
    except httpx.HTTPError as exc:
        logger.warning("Could not validate remote store connection: %s", exc)
        return True
    finally:
        if owns_client:
            http.close()

    if resp.status_code == 403:
        raise ConfigError("Invalid R2 credentials - access denied")
    if resp.status_code == 404:
        raise NotFoundError(f"R2 bucket '{config.bucket}' not found")
    logger.debug("Bucket probe %s -> HTTP %s", url, resp.status_code)
    return True


__all__ = ["R2Config", "probe_bucket", "status_message"]
