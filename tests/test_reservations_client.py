from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

import httpx
import pytest

from hostel_metrics.services.reservations_client import (
    AuthenticationError,
    CloudbedsClient,
    ConfigurationError,
    MalformedPayloadError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ReservationApiConfig,
    UpstreamServerError,
)


class _DummyResponse:
    def __init__(self, payload: Any, status_code: int = 200, text: str = "") -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _DummyAsyncClient:
    instances: list["_DummyAsyncClient"] = []

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.requests: list[tuple[str, dict[str, str]]] = []
        self.outcomes: list[Any] = []
        self.closed = False
        _DummyAsyncClient.instances.append(self)

    async def get(self, url: str, params: dict[str, str] | None = None) -> _DummyResponse:
        self.requests.append((url, dict(params or {})))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def dummy_client(monkeypatch: pytest.MonkeyPatch) -> type[_DummyAsyncClient]:
    _DummyAsyncClient.instances = []
    monkeypatch.setattr("hostel_metrics.services.reservations_client.httpx.AsyncClient", _DummyAsyncClient)
    return _DummyAsyncClient


def _config() -> ReservationApiConfig:
    return ReservationApiConfig(api_key="secret", base_url="https://pms.test/api/v1.3/", timeout_s=5)


def test_config_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        ReservationApiConfig(api_key="  ")
    with pytest.raises(ConfigurationError):
        ReservationApiConfig(api_key="secret", timeout_s=0)


@pytest.mark.asyncio
async def test_fetch_reservations_sends_bounds_and_bearer_token(dummy_client) -> None:
    async with CloudbedsClient(_config()) as client:
        transport = dummy_client.instances[0]
        transport.outcomes.append(
            _DummyResponse({"success": True, "data": [{"reservationID": "1"}, {"reservationID": "2"}]})
        )
        data = await client.fetch_reservations("6733", date(2024, 12, 16), date(2024, 12, 22))

    assert [item["reservationID"] for item in data] == ["1", "2"]
    url, params = transport.requests[0]
    assert url == "https://pms.test/api/v1.3/getReservations"
    assert params == {
        "propertyID": "6733",
        "resultsFrom": "2024-12-16 00:00:00",
        "resultsTo": "2024-12-22 23:59:59",
    }
    assert transport.kwargs["headers"]["Authorization"] == "Bearer secret"
    assert transport.kwargs["timeout"] == 5
    assert transport.closed is True


@pytest.mark.asyncio
async def test_empty_data_is_a_normal_result(dummy_client) -> None:
    client = CloudbedsClient(_config())
    dummy_client.instances[0].outcomes.extend(
        [_DummyResponse({"success": True, "data": []}), _DummyResponse({"success": True})]
    )

    assert await client.fetch_reservations("6733", date(2024, 12, 16), date(2024, 12, 22)) == []
    assert await client.fetch_reservations("6733", date(2024, 12, 16), date(2024, 12, 22)) == []
    await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("outcome", "expected", "category", "retryable"),
    [
        (_DummyResponse({}, status_code=401), AuthenticationError, "auth", False),
        (_DummyResponse({}, status_code=403), AuthenticationError, "auth", False),
        (_DummyResponse({}, status_code=404), NotFoundError, "not_found", False),
        (_DummyResponse({}, status_code=503, text="unavailable"), UpstreamServerError, "server", True),
        (_DummyResponse({}, status_code=400, text="bad"), UpstreamServerError, "server", False),
        (_DummyResponse({"success": False, "message": "nope"}), MalformedPayloadError, "malformed", False),
        (_DummyResponse({"success": True, "data": {"x": 1}}), MalformedPayloadError, "malformed", False),
        (_DummyResponse(ValueError("not json")), MalformedPayloadError, "malformed", False),
        (httpx.ReadTimeout("slow"), RequestTimeoutError, "timeout", True),
        (httpx.ConnectError("refused"), NetworkError, "network", True),
    ],
)
async def test_error_taxonomy(dummy_client, outcome, expected, category, retryable) -> None:
    client = CloudbedsClient(_config())
    dummy_client.instances[0].outcomes.append(outcome)

    with pytest.raises(expected) as excinfo:
        await client.fetch_reservations("6733", date(2024, 12, 16), date(2024, 12, 22))

    assert excinfo.value.category == category
    assert excinfo.value.retryable is retryable
    await client.aclose()


@pytest.mark.asyncio
async def test_reservation_detail_returns_price_breakdown(dummy_client) -> None:
    client = CloudbedsClient(_config())
    transport = dummy_client.instances[0]
    transport.outcomes.append(
        _DummyResponse(
            {
                "success": True,
                "data": {"total": "230.00", "balanceDetailed": {"subTotal": 200, "taxesFees": "30.00"}},
            }
        )
    )

    details = await client.fetch_reservation_detail("6733", "R-9")

    assert details.total == Decimal("230.00")
    assert details.net_price == Decimal("200")
    assert details.taxes == Decimal("30.00")
    assert transport.requests[0] == (
        "https://pms.test/api/v1.3/getReservation",
        {"propertyID": "6733", "reservationID": "R-9"},
    )
    await client.aclose()
