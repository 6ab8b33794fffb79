"""
S3 Content Store

aioboto3-backed implementation of ContentStore. One client context is
opened per call; the session itself is cheap and reused.

Source documents arrive in one of three URL shapes, all resolved by
parse_s3_url():
    s3://<bucket>/<key>
    https://<bucket>.s3.<region>.amazonaws.com/<key>      (virtual-hosted)
    https://s3.<region>.amazonaws.com/<bucket>/<key>      (path-style)
"""

from __future__ import annotations

import logging
from urllib.parse import unquote, urlparse

import aioboto3
from botocore.exceptions import ClientError

from aseekbot.core.config import Settings, settings as default_settings
from aseekbot.storage.base import ContentStore, ObjectMetadata, ObjectRef, PresignedUrl

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------

def parse_s3_url(url: str) -> ObjectRef:
    """
    Resolve an s3:// or https:// object URL into an ObjectRef.
    Raises ValueError for anything that does not name both bucket and key.
    """
    parsed = urlparse(url.strip())

    if parsed.scheme == "s3":
        bucket, key = parsed.netloc, parsed.path.lstrip("/")
    elif parsed.scheme in ("https", "http"):
        host = parsed.hostname or ""
        path = unquote(parsed.path.lstrip("/"))
        if host.startswith("s3.") or host == "s3.amazonaws.com":
            # path-style: first path segment is the bucket
            bucket, _, key = path.partition("/")
        else:
            # virtual-hosted: bucket names may themselves contain dots
            marker = ".s3." if ".s3." in host else ".s3-"
            bucket, key = host.split(marker, 1)[0], path
    else:
        raise ValueError(f"Unsupported object URL scheme: {url!r}")

    if not bucket or not key:
        raise ValueError(f"Object URL must name a bucket and a key: {url!r}")
    return ObjectRef(bucket=bucket, key=key)


def file_type_from_name(name: str) -> str:
    """Lower-cased extension without the dot; empty string when there is none."""
    base = name.rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[-1].lower()


# ---------------------------------------------------------------------------
# S3 implementation
# ---------------------------------------------------------------------------

class S3ContentStore(ContentStore):
    """Async S3 operations over aioboto3."""

    def __init__(self, config: Settings | None = None) -> None:
        self._cfg = config or default_settings
        self._session = aioboto3.Session()

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client("s3", **self._cfg.aws_client_kwargs())

    async def put_bytes(
        self,
        ref: ObjectRef,
        body: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> ObjectMetadata:
        async with self._client() as s3:
            resp = await s3.put_object(
                Bucket=ref.bucket,
                Key=ref.key,
                Body=body,
                ContentType=content_type,
                Metadata=metadata or {},
            )

        logger.info("S3 put ok | key=%s size=%d", ref.uri, len(body))
        return ObjectMetadata(
            size_bytes=len(body),
            content_type=content_type,
            etag=resp.get("ETag", "").strip('"'),
        )

    async def get_bytes(self, ref: ObjectRef) -> bytes:
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=ref.bucket, Key=ref.key)
                return await resp["Body"].read()
            except ClientError as exc:
                if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                    raise FileNotFoundError(f"Object not found: {ref.uri}") from exc
                raise

    async def head(self, ref: ObjectRef) -> ObjectMetadata:
        async with self._client() as s3:
            try:
                resp = await s3.head_object(Bucket=ref.bucket, Key=ref.key)
            except ClientError as exc:
                if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                    raise FileNotFoundError(f"Object not found: {ref.uri}") from exc
                raise

        return ObjectMetadata(
            size_bytes=int(resp.get("ContentLength", 0)),
            content_type=resp.get("ContentType", "") or "",
            etag=resp.get("ETag", "").strip('"'),
        )

    async def delete(self, ref: ObjectRef) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=ref.bucket, Key=ref.key)
        logger.info("S3 delete | key=%s", ref.uri)

    async def presigned_get(self, ref: ObjectRef, expires_in: int = 300) -> PresignedUrl:
        """
        Short-lived presigned GET URL for direct browser download.
        The URL is scoped to the exact object key.
        """
        async with self._client() as s3:
            url = await s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": ref.bucket, "Key": ref.key},
                ExpiresIn=expires_in,
            )
        return PresignedUrl(url=url, expires_in=expires_in, method="GET")
