"""
Report document storage and loading.

Locators are either paths under REPORTS_DIR or https URLs; callers do not
need to know which. Size and path checks run before any content is read.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from core.config import settings
from core.exceptions import (
    AuthenticationError,
    DataFormatError,
    DocumentNotFoundError,
    DocumentTooLargeError,
    InvalidLocatorError,
    NetworkError,
    RateLimitError,
    ServiceUnavailableError,
    DocumentFetchError,
)
from core.resilience import CircuitBreaker, RateLimiter, report_api_breaker, report_api_limiter
from models.base import ReportPeriod

logger = logging.getLogger(__name__)


class DocumentStore:
    """
    Store and read report documents.

    Attributes:
        base_dir: Root directory for local documents
        max_size_bytes: Payload ceiling applied to local and remote reads
        timeout: Remote fetch timeout in seconds
    """

    def __init__(
        self,
        base_dir: Optional[str] = None,
        max_size_mb: Optional[int] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        self.base_dir = Path(base_dir or settings.REPORTS_DIR).resolve()
        self.max_size_bytes = (max_size_mb or settings.MAX_DOCUMENT_SIZE_MB) * 1024 * 1024
        self.timeout = timeout or settings.FETCH_TIMEOUT_SECONDS
        self._client = client
        self.breaker = breaker or report_api_breaker
        self.limiter = limiter or report_api_limiter

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def build_path(
        self,
        amazon_seller_id: str,
        period: ReportPeriod,
        report_id: str,
        when: Optional[datetime] = None,
    ) -> Path:
        """<base>/<seller>/<period>/<yyyy-mm-dd>/<period>_<report_id>_<timestamp>.json"""
        when = when or datetime.utcnow()
        period = ReportPeriod(period)
        name = f"{period.value}_{report_id}_{when.strftime('%Y%m%dT%H%M%S%f')}.json"
        return self.base_dir / str(amazon_seller_id) / period.value / when.strftime("%Y-%m-%d") / name

    def store(self, content: Any, path: Path) -> str:
        """Write content (bytes, str or JSON-serializable) and return its locator"""
        target = self._local_path(str(path))
        if isinstance(content, bytes):
            payload = content
        elif isinstance(content, str):
            payload = content.encode("utf-8")
        else:
            payload = json.dumps(content).encode("utf-8")

        if len(payload) > self.max_size_bytes:
            raise DocumentTooLargeError(
                "Document exceeds size limit",
                context={"size": len(payload), "limit": self.max_size_bytes}
            )

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)
        logger.info(f"Stored report document at {target} ({len(payload)} bytes)")
        return str(target)

    async def save(self, content: Any, path: Path) -> str:
        """Async variant of store; file writes run in a worker thread"""
        return await asyncio.to_thread(self.store, content, path)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def read(self, locator: str) -> bytes:
        if not locator:
            raise InvalidLocatorError("Document locator is empty")

        scheme = urlparse(locator).scheme.lower()
        if scheme in ("http", "https"):
            if scheme != "https":
                raise InvalidLocatorError(
                    "Remote documents must use https",
                    context={"locator": locator}
                )
            return await self._read_remote(locator)
        if scheme and scheme != "file" and len(scheme) > 1:
            raise InvalidLocatorError(f"Unsupported locator scheme: {scheme}", context={"locator": locator})

        return await asyncio.to_thread(self._read_local, locator)

    async def load_json(self, locator: str) -> Any:
        """Read and parse a document; malformed content raises DataFormatError"""
        payload = await self.read(locator)
        try:
            return json.loads(payload.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DataFormatError(
                "Report document is not valid JSON",
                context={"locator": locator},
                original_exception=e
            )

    def _local_path(self, locator: str) -> Path:
        if locator.startswith("file://"):
            locator = urlparse(locator).path
        path = Path(locator)
        if not path.is_absolute():
            path = self.base_dir / path
        resolved = path.resolve()

        try:
            resolved.relative_to(self.base_dir)
        except ValueError:
            raise InvalidLocatorError(
                "Document path escapes the reports directory",
                context={"locator": locator, "reports_dir": str(self.base_dir)}
            )
        return resolved

    def _read_local(self, locator: str) -> bytes:
        path = self._local_path(locator)
        if not path.is_file():
            raise DocumentNotFoundError(
                "Report document file not found",
                context={"locator": locator}
            )

        size = path.stat().st_size
        if size > self.max_size_bytes:
            raise DocumentTooLargeError(
                "Document exceeds size limit",
                context={"locator": locator, "size": size, "limit": self.max_size_bytes}
            )
        return path.read_bytes()

    async def _read_remote(self, url: str) -> bytes:
        await self.limiter.acquire(urlparse(url).netloc)
        return await self.breaker.call(lambda: self._fetch(url))

    async def _fetch(self, url: str) -> bytes:
        context = {"locator": url}
        try:
            if self._client is not None:
                return await self._stream(self._client, url, context)
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                return await self._stream(client, url, context)
        except httpx.TimeoutException as e:
            raise NetworkError("Timeout fetching report document", context=context, original_exception=e)
        except httpx.TransportError as e:
            raise NetworkError("Network error fetching report document", context=context, original_exception=e)

    async def _stream(self, client: httpx.AsyncClient, url: str, context: dict) -> bytes:
        """Read the body in chunks, stopping as soon as it passes the size ceiling"""
        async with client.stream("GET", url, timeout=self.timeout) as response:
            context["status_code"] = response.status_code
            self._raise_for_status(response, context)

            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > self.max_size_bytes:
                raise DocumentTooLargeError(
                    "Document exceeds size limit",
                    context={**context, "size": int(declared), "limit": self.max_size_bytes}
                )

            received = bytearray()
            async for chunk in response.aiter_bytes():
                received.extend(chunk)
                if len(received) > self.max_size_bytes:
                    raise DocumentTooLargeError(
                        "Document exceeds size limit",
                        context={**context, "limit": self.max_size_bytes}
                    )
            return bytes(received)

    @staticmethod
    def _raise_for_status(response: httpx.Response, context: dict) -> None:
        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError("Unauthorized fetching report document", context=context)
        if status == 404:
            raise DocumentNotFoundError("Report document not found", context=context)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limit exceeded fetching report document",
                context=context,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if status >= 500:
            raise ServiceUnavailableError("Report document service unavailable", context=context)
        if status >= 400:
            raise DocumentFetchError(f"Unexpected HTTP {status}", context=context)
