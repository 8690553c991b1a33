"""Tests for the Trade Me localities client."""

import json
from typing import Any

import httpx
import pytest
from pydantic import ValidationError
from pytest_httpx import HTTPXMock

from nz_housing_stats.models import ListingTypeCode
from nz_housing_stats.sources.trademe import TradeMeLocalitiesSource, UpstreamFetchError

URL = "https://api.trademe.co.nz/v1/localities.json"


def _url(code: str) -> str:
    return f"{URL}?with_counts=true&listing_type={code}"


class TestFetchLocalities:
    @pytest.mark.asyncio
    async def test_successful_fetch(
        self, httpx_mock: HTTPXMock, northland_payload: list[dict[str, Any]]
    ) -> None:
        httpx_mock.add_response(url=_url("HOUSES_TO_BUY"), json=northland_payload)

        source = TradeMeLocalitiesSource()
        try:
            regions = await source.fetch_localities(ListingTypeCode.HOUSES_TO_BUY)
        finally:
            await source.close()

        # The sentinel is passed through; filtering happens in reconciliation
        assert [r.locality_id for r in regions] == [100, 9]
        assert regions[1].districts[0].suburbs[0].count == 354

    @pytest.mark.asyncio
    async def test_sends_query_and_headers(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=_url("HOUSES_TO_RENT"), json=[])

        source = TradeMeLocalitiesSource(user_agent="TestAgent/2.0")
        try:
            await source.fetch_localities(ListingTypeCode.HOUSES_TO_RENT)
        finally:
            await source.close()

        request = httpx_mock.get_request()
        assert request.url.params["with_counts"] == "true"
        assert request.url.params["listing_type"] == "HOUSES_TO_RENT"
        assert request.headers["User-Agent"] == "TestAgent/2.0"
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_non_200_raises(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=_url("HOUSES_TO_BUY"), status_code=503)

        source = TradeMeLocalitiesSource()
        try:
            with pytest.raises(UpstreamFetchError, match="API failed: 503") as exc_info:
                await source.fetch_localities(ListingTypeCode.HOUSES_TO_BUY)
        finally:
            await source.close()
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout_raises(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=_url("HOUSES_TO_BUY"))

        source = TradeMeLocalitiesSource()
        try:
            with pytest.raises(UpstreamFetchError, match="timed out") as exc_info:
                await source.fetch_localities(ListingTypeCode.HOUSES_TO_BUY)
        finally:
            await source.close()
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_connection_error_raises(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("refused"), url=_url("HOUSES_TO_BUY"))

        source = TradeMeLocalitiesSource()
        try:
            with pytest.raises(UpstreamFetchError, match="request failed"):
                await source.fetch_localities(ListingTypeCode.HOUSES_TO_BUY)
        finally:
            await source.close()

    @pytest.mark.asyncio
    async def test_malformed_payload_raises_validation_error(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=_url("HOUSES_TO_BUY"), content=json.dumps({"error": "nope"}).encode()
        )

        source = TradeMeLocalitiesSource()
        try:
            with pytest.raises(ValidationError):
                await source.fetch_localities(ListingTypeCode.HOUSES_TO_BUY)
        finally:
            await source.close()


class TestClientOwnership:
    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=_url("HOUSES_TO_BUY"), json=[])

        async with httpx.AsyncClient() as client:
            source = TradeMeLocalitiesSource(client=client)
            await source.fetch_localities(ListingTypeCode.HOUSES_TO_BUY)
            await source.close()
            assert not client.is_closed

    @pytest.mark.asyncio
    async def test_close_without_fetch_is_noop(self) -> None:
        source = TradeMeLocalitiesSource()
        await source.close()
