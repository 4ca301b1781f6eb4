"""
Tests for report document storage and reading
"""

import json
import httpx
import pytest
from datetime import datetime
from core.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    DataFormatError,
    DocumentNotFoundError,
    DocumentTooLargeError,
    InvalidLocatorError,
    RateLimitError,
    ServiceUnavailableError,
)
from core.resilience import CircuitBreaker, RateLimiter
from ingestion.documents import DocumentStore
from models.base import ReportPeriod


class CountingStream(httpx.AsyncByteStream):
    """Response body that records how many chunks were pulled"""

    def __init__(self, chunks):
        self.chunks = chunks
        self.pulled = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            self.pulled += 1
            yield chunk


def remote_store(tmp_path, handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DocumentStore(
        base_dir=str(tmp_path),
        client=client,
        breaker=kwargs.pop("breaker", CircuitBreaker("test-docs", failure_threshold=5, reset_timeout=60)),
        limiter=RateLimiter(max_requests=100, window_seconds=60),
        **kwargs
    )


class TestLocalDocuments:

    def test_build_path_layout(self, tmp_path):
        store = DocumentStore(base_dir=str(tmp_path))

        path = store.build_path("A1SELLER", ReportPeriod.WEEK, "RPT-1", when=datetime(2025, 1, 12, 8, 30))

        assert path.parent == tmp_path.resolve() / "A1SELLER" / "WEEK" / "2025-01-12"
        assert path.name.startswith("WEEK_RPT-1_20250112T083000")

    @pytest.mark.asyncio
    async def test_store_and_load(self, tmp_path, sqp_document):
        store = DocumentStore(base_dir=str(tmp_path))
        locator = store.store(sqp_document, store.build_path("A1SELLER", ReportPeriod.WEEK, "RPT-1"))

        assert await store.load_json(locator) == sqp_document

    @pytest.mark.asyncio
    async def test_save_writes_off_the_event_loop(self, tmp_path, sqp_document):
        store = DocumentStore(base_dir=str(tmp_path))

        locator = await store.save(sqp_document, store.build_path("A1SELLER", ReportPeriod.MONTH, "RPT-2"))

        assert json.loads((tmp_path / locator).read_text()) == sqp_document

    @pytest.mark.asyncio
    async def test_relative_locator_resolves_under_base_dir(self, tmp_path):
        (tmp_path / "doc.json").write_text("[]")

        assert await DocumentStore(base_dir=str(tmp_path)).load_json("doc.json") == []

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, tmp_path):
        store = DocumentStore(base_dir=str(tmp_path / "reports"))

        with pytest.raises(InvalidLocatorError):
            await store.read("../secrets.json")
        with pytest.raises(InvalidLocatorError):
            store.store({}, tmp_path / "outside.json")

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(DocumentNotFoundError):
            await DocumentStore(base_dir=str(tmp_path)).read("nope.json")

    @pytest.mark.asyncio
    async def test_oversized_file(self, tmp_path):
        (tmp_path / "big.json").write_bytes(b"[" + b" " * (1024 * 1024) + b"]")

        with pytest.raises(DocumentTooLargeError):
            await DocumentStore(base_dir=str(tmp_path), max_size_mb=1).read("big.json")

    @pytest.mark.asyncio
    async def test_malformed_json(self, tmp_path):
        (tmp_path / "bad.json").write_text("{not json")

        with pytest.raises(DataFormatError):
            await DocumentStore(base_dir=str(tmp_path)).load_json("bad.json")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("locator", ["", "http://example.com/doc.json", "s3://bucket/doc.json"])
    async def test_unsupported_locators(self, tmp_path, locator):
        with pytest.raises(InvalidLocatorError):
            await DocumentStore(base_dir=str(tmp_path)).read(locator)


class TestRemoteDocuments:

    @pytest.mark.asyncio
    async def test_https_document(self, tmp_path, sqp_document):
        store = remote_store(tmp_path, lambda request: httpx.Response(200, json=sqp_document))

        assert await store.load_json("https://reports.example.com/doc/1") == sqp_document

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, error", [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (404, DocumentNotFoundError),
        (429, RateLimitError),
        (503, ServiceUnavailableError),
    ])
    async def test_status_mapping(self, tmp_path, status, error):
        store = remote_store(tmp_path, lambda request: httpx.Response(status))

        with pytest.raises(error):
            await store.read("https://reports.example.com/doc/1")

    @pytest.mark.asyncio
    async def test_oversized_remote_document(self, tmp_path):
        store = remote_store(tmp_path, lambda request: httpx.Response(200, content=b"x" * (1024 * 1024 + 1)), max_size_mb=1)

        with pytest.raises(DocumentTooLargeError):
            await store.read("https://reports.example.com/doc/1")

    @pytest.mark.asyncio
    async def test_declared_length_rejected_before_body_is_read(self, tmp_path):
        body = CountingStream([b"x"])
        store = remote_store(
            tmp_path,
            lambda request: httpx.Response(200, headers={"Content-Length": str(2 * 1024 * 1024)}, stream=body),
            max_size_mb=1,
        )

        with pytest.raises(DocumentTooLargeError):
            await store.read("https://reports.example.com/doc/1")
        assert body.pulled == 0

    @pytest.mark.asyncio
    async def test_undeclared_body_stops_at_size_ceiling(self, tmp_path):
        body = CountingStream([b"x" * (512 * 1024)] * 10)
        store = remote_store(tmp_path, lambda request: httpx.Response(200, stream=body), max_size_mb=1)

        with pytest.raises(DocumentTooLargeError):
            await store.read("https://reports.example.com/doc/1")
        assert body.pulled == 3

    @pytest.mark.asyncio
    async def test_breaker_opens_on_repeated_failures(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        store = remote_store(tmp_path, handler, breaker=CircuitBreaker("test-docs", failure_threshold=2, reset_timeout=60))

        for _ in range(2):
            with pytest.raises(ServiceUnavailableError):
                await store.read("https://reports.example.com/doc/1")
        with pytest.raises(CircuitOpenError):
            await store.read("https://reports.example.com/doc/1")

        assert len(calls) == 2
