"""
S3-compatible object store source.
"""

import fnmatch
import logging
import posixpath
import typing

import boto3
from botocore.config import Config as BotoConfig

from access_log_scanner.errors import StreamNotSupported
from access_log_scanner.sources.base import (
    SOURCE_S3,
    LogSource,
    TargetMeta,
    TargetRef,
    is_compressed_by_name,
)

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


def match_s3_pattern(pattern: str, key: str) -> bool:
    """
    Match an object key against a glob pattern.

    The full key is tried first, then the key's basename against the pattern's
    basename, so "access.log*" matches "logs/2024/access.log.1".
    """
    if fnmatch.fnmatchcase(key, pattern):
        return True
    return fnmatch.fnmatchcase(posixpath.basename(key), posixpath.basename(pattern))


def build_range_header(start: int, end: int) -> str:
    """Build an HTTP Range header value for [start, end); end < 0 means open-ended."""
    if end > 0 and end > start:
        return f"bytes={start}-{end - 1}"
    return f"bytes={start}-"


def _timestamp(value) -> int:
    if value is None:
        return 0
    return int(value.timestamp())


class S3Source(LogSource):
    """
    Objects under a bucket prefix, optionally filtered by a glob pattern.

    A custom endpoint (MinIO, Ceph, ...) switches the client to path-style
    addressing. Static keys are optional; without them boto3's default
    credential chain applies.
    """

    type = SOURCE_S3

    def __init__(
        self,
        website_id: str,
        source_id: str,
        bucket: str,
        prefix: str = "",
        pattern: str = "",
        endpoint: str = "",
        region: str = "",
        access_key: str = "",
        secret_key: str = "",
        compression: str = "",
        range_policy: str = "auto",
        mode: str = "poll",
        client=None,
    ):
        super().__init__(website_id, source_id, compression, range_policy, mode)
        self.bucket = bucket
        self.prefix = prefix or ""
        self.pattern = pattern
        self.endpoint = endpoint
        self.region = region or DEFAULT_REGION
        self.client = client or self._make_client(access_key, secret_key)

    def _make_client(self, access_key: str, secret_key: str):
        kwargs = {"region_name": self.region}
        if access_key and secret_key:
            kwargs["aws_access_key_id"] = access_key
            kwargs["aws_secret_access_key"] = secret_key
        if self.endpoint:
            kwargs["endpoint_url"] = self.endpoint
            kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})
        return boto3.client("s3", **kwargs)

    def list_targets(self) -> typing.List[TargetRef]:
        targets = []
        params = {"Bucket": self.bucket, "Prefix": self.prefix}
        pages = 0
        while True:
            resp = self.client.list_objects_v2(**params)
            pages += 1
            for obj in resp.get("Contents", []):
                key = obj.get("Key") or ""
                if not key:
                    continue
                if self.pattern and not match_s3_pattern(self.pattern, key):
                    continue
                targets.append(self.make_target(
                    key,
                    size=obj.get("Size") or 0,
                    mod_time=_timestamp(obj.get("LastModified")),
                    etag=(obj.get("ETag") or "").strip('"'),
                ))
            token = resp.get("NextContinuationToken")
            if resp.get("IsTruncated") and token:
                params["ContinuationToken"] = token
                continue
            break
        logger.debug("Listed %d objects in s3://%s/%s (%d pages)", len(targets), self.bucket, self.prefix, pages)
        return targets

    def open_range(self, target: TargetRef, start: int, end: int = -1):
        self.check_range_policy(start)
        params = {"Bucket": self.bucket, "Key": target.key}
        if start > 0 or end > 0:
            params["Range"] = build_range_header(start, end)
        resp = self.client.get_object(**params)
        return resp["Body"]

    def open_stream(self, target: TargetRef):
        raise StreamNotSupported(f"s3 source {self.id} only supports range reads")

    def stat(self, target: TargetRef) -> TargetMeta:
        resp = self.client.head_object(Bucket=self.bucket, Key=target.key)
        return TargetMeta(
            size=resp.get("ContentLength") or 0,
            mod_time=_timestamp(resp.get("LastModified")),
            etag=(resp.get("ETag") or "").strip('"'),
            compressed=is_compressed_by_name(target.key, self.compression),
        )
