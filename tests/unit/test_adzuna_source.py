"""Tests for the Adzuna job source (request building and response handling)."""

import logging

import httpx
import pytest

from src.core.config import AdzunaConfig, Credentials
from src.core.exceptions import ConfigurationError, UpstreamError
from src.pipeline.throttle import ProviderThrottle
from src.sources.adzuna import AdzunaSource
from src.sources.base import SourceQuery

CREDS = Credentials(adzuna_app_id="app-id", adzuna_app_key="app-key")


def _source(handler, credentials: Credentials = CREDS, **kw: object) -> tuple[AdzunaSource, httpx.AsyncClient]:  # type: ignore[no-untyped-def]
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AdzunaSource(client, credentials, AdzunaConfig(), **kw), client  # type: ignore[arg-type]


class TestBuildRequest:
    def test_url_and_base_params(self) -> None:
        source = AdzunaSource(httpx.AsyncClient(), CREDS)
        url, params = source.build_request(2, 50)
        assert url == "https://api.adzuna.com/v1/api/jobs/fr/search/2"
        assert params == {
            "app_id": "app-id",
            "app_key": "app-key",
            "results_per_page": 50,
            "content": "full",
        }

    def test_query_terms(self) -> None:
        source = AdzunaSource(httpx.AsyncClient(), CREDS)
        _, params = source.build_request(
            1, 20, SourceQuery(keyword="python", city="Lyon", min_salary=40000, max_salary=60000),
        )
        assert params["what"] == "python"
        assert params["where"] == "Lyon"
        assert params["salary_min"] == 40000
        assert params["salary_max"] == 60000

    def test_page_size_clamped(self) -> None:
        source = AdzunaSource(httpx.AsyncClient(), CREDS)
        assert source.build_request(1, 500)[1]["results_per_page"] == 100
        assert source.build_request(1, 0)[1]["results_per_page"] == 1

    def test_country_from_config(self) -> None:
        source = AdzunaSource(httpx.AsyncClient(), CREDS, AdzunaConfig(country="gb"))
        assert source.build_request(1, 10)[0].endswith("/gb/search/1")


class TestFetchPage:
    async def test_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"count": 2, "results": [{"id": "1"}, {"id": "2"}]})

        source, client = _source(handler)
        async with client:
            page = await source.fetch_page(3, 50, SourceQuery(keyword="data"))

        assert page.count == 2
        assert [r["id"] for r in page.results] == ["1", "2"]
        assert seen[0].url.path == "/v1/api/jobs/fr/search/3"
        assert seen[0].url.params["what"] == "data"
        assert seen[0].headers["Accept"] == "application/json"

    async def test_non_2xx_raises_upstream_error(self) -> None:
        source, client = _source(lambda r: httpx.Response(503, text="maintenance"))
        async with client:
            with pytest.raises(UpstreamError) as exc_info:
                await source.fetch_page(1, 50)
        assert exc_info.value.status == 503
        assert "maintenance" in str(exc_info.value)

    async def test_transport_error_raises_upstream_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)

        source, client = _source(handler)
        async with client:
            with pytest.raises(UpstreamError) as exc_info:
                await source.fetch_page(1, 50)
        assert exc_info.value.status is None

    async def test_invalid_json_raises_upstream_error(self) -> None:
        source, client = _source(lambda r: httpx.Response(200, text="<html>oops</html>"))
        async with client:
            with pytest.raises(UpstreamError):
                await source.fetch_page(1, 50)

    async def test_missing_results_is_empty_page(self) -> None:
        source, client = _source(lambda r: httpx.Response(200, json={"count": 0}))
        async with client:
            page = await source.fetch_page(1, 50)
        assert page.results == []

    async def test_non_dict_results_filtered(self) -> None:
        source, client = _source(lambda r: httpx.Response(200, json={"results": [{"id": "1"}, "x", 3]}))
        async with client:
            page = await source.fetch_page(1, 50)
        assert page.results == [{"id": "1"}]

    async def test_goes_through_throttle(self) -> None:
        throttle = ProviderThrottle(limit=5, interval_s=1.0)
        source, client = _source(
            lambda r: httpx.Response(200, json={"results": []}), throttle=throttle,
        )
        async with client:
            await source.fetch_page(1, 50)
        assert len(throttle._starts) == 1


class TestCredentials:
    async def test_missing_in_production_raises(self) -> None:
        source, client = _source(lambda r: httpx.Response(200, json={"results": []}),
                                 credentials=Credentials(), production=True)
        async with client:
            with pytest.raises(ConfigurationError):
                await source.fetch_page(1, 50)

    async def test_missing_in_development_warns_and_proceeds(
        self, caplog: pytest.LogCaptureFixture,
    ) -> None:
        source, client = _source(lambda r: httpx.Response(200, json={"results": [{"id": "1"}]}),
                                 credentials=Credentials())
        with caplog.at_level(logging.WARNING, logger="src.sources.adzuna"):
            async with client:
                page = await source.fetch_page(1, 50)
        assert len(page.results) == 1
        assert "ADZUNA_APP_ID" in caplog.text
