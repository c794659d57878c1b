"""Unit tests for documentation fetching and the context service."""

from __future__ import annotations

import httpx
import pytest

from movesmith.domain.errors import SourceFetchError
from movesmith.knowledge_plane.reference_docs import (
    DEFAULT_DOCS_FULL_URL,
    DEFAULT_DOCS_SMALL_URL,
    ContextService,
    DocVariant,
    ReferenceDocs,
    is_domain_query,
    select_variant,
)

DOCS = """# Digital Assets
Digital asset collections group NFT tokens. Minting a token requires a collection.
# Gas
Gas fees are charged per transaction.
"""


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("a simple nft", DocVariant.SMALL),
        ("a COMPLETE marketplace with security checks", DocVariant.FULL),
        ("step by step tutorial", DocVariant.FULL),
    ],
)
def test_select_variant(query: str, expected: DocVariant) -> None:
    assert select_variant(query) is expected


def test_is_domain_query() -> None:
    assert is_domain_query("How do I publish a Move module?")
    assert is_domain_query("what is a Smart Contract")
    assert not is_domain_query("what's the weather like")


async def test_fetch_uses_variant_url_and_caches_per_variant() -> None:
    requested: list[str] = []
    clock = _Clock()

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, text=DOCS)

    docs = ReferenceDocs(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        cache_ttl_seconds=100.0,
        clock=clock,
    )

    assert await docs.fetch(DocVariant.SMALL) == DOCS
    assert await docs.fetch(DocVariant.SMALL) == DOCS
    await docs.fetch(DocVariant.FULL)
    assert requested == [DEFAULT_DOCS_SMALL_URL, DEFAULT_DOCS_FULL_URL]

    clock.now = 100.0
    await docs.fetch(DocVariant.SMALL)
    assert len(requested) == 3


async def test_fetch_maps_http_errors() -> None:
    docs = ReferenceDocs(
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    )
    with pytest.raises(SourceFetchError, match="HTTP 503") as excinfo:
        await docs.fetch(DocVariant.SMALL)
    assert excinfo.value.path == DEFAULT_DOCS_SMALL_URL

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    offline = ReferenceDocs(client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
    with pytest.raises(SourceFetchError, match="documentation fetch failed"):
        await offline.fetch(DocVariant.FULL)


async def test_context_service_assembles_relevant_sections() -> None:
    docs = ReferenceDocs(
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, text=DOCS)))
    )
    service = ContextService(docs, max_tokens=500)

    context = await service.relevant_context("minting a collection")

    assert context.startswith("# Digital Assets")
    assert "Gas fees" not in context
    assert service.max_tokens == 500
    assert service.is_domain_query("nft collection")


def test_context_service_rejects_non_positive_budget() -> None:
    docs = ReferenceDocs(
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    )
    with pytest.raises(ValueError):
        ContextService(docs, max_tokens=0)
