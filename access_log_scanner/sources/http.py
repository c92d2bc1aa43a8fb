"""
HTTP(S) source: a single log file served by a web server.
"""

import email.utils
import logging
import typing
import warnings

import requests
from urllib3.exceptions import InsecureRequestWarning

from access_log_scanner.errors import RangeNotSupported, SourceError
from access_log_scanner.sources.base import (
    RANGE_FORCE,
    SOURCE_HTTP,
    ClosingStream,
    LogSource,
    TargetMeta,
    TargetRef,
    is_compressed_by_name,
)
from access_log_scanner.sources.s3 import build_range_header

logger = logging.getLogger(__name__)


def get_verify_from_tls_opts(tls_opts: dict):
    """
    Determine whether to verify SSL certificates based on TLS options.

    Args:
        tls_opts (dict): TLS options.

    Returns:
        bool or str: True/False or path to CA cert.
    """
    ca_cert = tls_opts.get("ca_cert", True)
    if isinstance(ca_cert, str) and ca_cert.strip().lower() == "false":
        warnings.simplefilter('ignore', InsecureRequestWarning)
        return False
    return ca_cert if ca_cert else True


def parse_http_date(value: typing.Optional[str]) -> int:
    if not value:
        return 0
    try:
        return int(email.utils.parsedate_to_datetime(value).timestamp())
    except (TypeError, ValueError):
        logger.debug("Unparseable Last-Modified header: %r", value)
        return 0


class HTTPSource(LogSource):
    """
    One URL read with HEAD for metadata and GET (optionally ranged) for content.

    A server that answers a ranged GET with 200 instead of 206 ignores ranges.
    Under the "auto" policy that surfaces as RangeNotSupported so the scanner
    can fall back to skipping; under "range" it is an error.
    """

    type = SOURCE_HTTP

    def __init__(
        self,
        website_id: str,
        source_id: str,
        url: str,
        headers: typing.Optional[dict] = None,
        tls: typing.Optional[dict] = None,
        timeout: float = 30,
        compression: str = "",
        range_policy: str = "auto",
        mode: str = "poll",
        session: typing.Optional[requests.Session] = None,
    ):
        super().__init__(website_id, source_id, compression, range_policy, mode)
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout
        tls = tls or {}
        self.session = session or requests.Session()
        self.session.verify = get_verify_from_tls_opts(tls)
        if tls.get("client_cert") and tls.get("client_key"):
            self.session.cert = (tls["client_cert"], tls["client_key"])

    def _meta_from_headers(self, headers) -> TargetMeta:
        try:
            size = int(headers.get("Content-Length") or 0)
        except ValueError:
            size = 0
        return TargetMeta(
            size=size,
            mod_time=parse_http_date(headers.get("Last-Modified")),
            etag=(headers.get("ETag") or "").strip('"'),
            compressed=is_compressed_by_name(self.url, self.compression),
        )

    def _request_headers(self, range_header: typing.Optional[str] = None) -> dict:
        headers = dict(self.headers)
        # Sizes and byte offsets refer to the stored representation, not a transfer-encoded one.
        headers["Accept-Encoding"] = "identity"
        if range_header:
            headers["Range"] = range_header
        return headers

    def _head(self) -> TargetMeta:
        resp = self.session.head(self.url, headers=self._request_headers(), timeout=self.timeout, allow_redirects=True)
        resp.raise_for_status()
        return self._meta_from_headers(resp.headers)

    def list_targets(self) -> typing.List[TargetRef]:
        meta = self._head()
        return [TargetRef(website_id=self.website_id, source_id=self.id, key=self.url, meta=meta)]

    def _get(self, range_header: typing.Optional[str] = None) -> requests.Response:
        headers = self._request_headers(range_header)
        resp = self.session.get(self.url, headers=headers, timeout=self.timeout, stream=True)
        try:
            resp.raise_for_status()
        except requests.HTTPError:
            resp.close()
            raise
        return resp

    def open_range(self, target: TargetRef, start: int, end: int = -1):
        self.check_range_policy(start)
        ranged = start > 0 or end > 0
        resp = self._get(build_range_header(start, end) if ranged else None)
        if ranged and resp.status_code != 206:
            resp.close()
            if self.range_policy == RANGE_FORCE:
                raise SourceError(f"http source {self.id}: server ignored range request (HTTP {resp.status_code})")
            raise RangeNotSupported(f"http source {self.id}: server does not honour range requests")
        return ClosingStream(resp.raw, [resp])

    def open_stream(self, target: TargetRef):
        resp = self._get()
        return ClosingStream(resp.raw, [resp])

    def stat(self, target: TargetRef) -> TargetMeta:
        return self._head()

    def close(self) -> None:
        self.session.close()
