"""Client for the upstream property-management reservation API."""
from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from hostel_metrics.bookings.normalizer import parse_optional_price, parse_price

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.cloudbeds.com/api/v1.3"
RESERVATIONS_PATH = "getReservations"
RESERVATION_PATH = "getReservation"


class ConfigurationError(RuntimeError):
    """Raised when required client configuration (credentials, URL) is absent."""


class ReservationApiError(RuntimeError):
    """Base class for upstream failures, classified without transport details."""

    category = "unknown"
    retryable = False

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class AuthenticationError(ReservationApiError):
    category = "auth"


class NotFoundError(ReservationApiError):
    category = "not_found"


class UpstreamServerError(ReservationApiError):
    category = "server"

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message, status=status)
        self.retryable = status is None or status >= 500 or status == 429


class MalformedPayloadError(ReservationApiError):
    category = "malformed"


class NetworkError(ReservationApiError):
    category = "network"
    retryable = True


class RequestTimeoutError(ReservationApiError):
    category = "timeout"
    retryable = True


@dataclass(slots=True, frozen=True)
class ReservationApiConfig:
    """Explicit connection settings handed to :class:`CloudbedsClient`."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if not self.api_key or not self.api_key.strip():
            raise ConfigurationError("Reservation API key is not configured")
        if not self.base_url:
            raise ConfigurationError("Reservation API base URL is not configured")
        if self.timeout_s <= 0:
            raise ConfigurationError("Reservation API timeout must be positive")


@dataclass(slots=True, frozen=True)
class EnrichmentDetails:
    """Precise price breakdown of a single reservation."""

    total: Decimal
    net_price: Optional[Decimal]
    taxes: Optional[Decimal]

    def to_fields(self) -> dict[str, object]:
        return {"total": self.total, "net_price": self.net_price, "taxes": self.taxes}


def _format_bound(value: date, *, end: bool) -> str:
    return f"{value.isoformat()} {'23:59:59' if end else '00:00:00'}"


class CloudbedsClient(AbstractAsyncContextManager["CloudbedsClient"]):
    """Thin async wrapper around the reservation list and detail endpoints."""

    def __init__(
        self,
        config: ReservationApiConfig,
        *,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        default_headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Accept": "application/json",
            "User-Agent": "hostel-metrics/0.1.0",
        }
        if headers:
            default_headers.update(headers)
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=config.timeout_s, headers=default_headers)

    @property
    def config(self) -> ReservationApiConfig:
        return self._config

    def ensure_configured(self) -> None:
        if not self._config.api_key:
            raise ConfigurationError("Reservation API key is not configured")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aexit__(self, exc_type, exc, exc_tb) -> None:
        await self.aclose()

    async def fetch_reservations(self, property_id: str, start: date, end: date) -> List[Dict[str, Any]]:
        """Return raw reservations created between ``start`` and ``end`` (inclusive)."""
        params = {
            "propertyID": property_id,
            "resultsFrom": _format_bound(start, end=False),
            "resultsTo": _format_bound(end, end=True),
        }
        logger.info("Fetching reservations for property %s (%s → %s)", property_id, start, end)
        payload = await self._get(RESERVATIONS_PATH, params, subject=f"Property {property_id}")
        data = payload.get("data")
        if data is None:
            logger.info("No reservations returned for property %s", property_id)
            return []
        if not isinstance(data, list):
            raise MalformedPayloadError(
                f"Reservation list for property {property_id} is not a list ({type(data).__name__})"
            )
        logger.info("Received %s reservations for property %s", len(data), property_id)
        return data

    async def fetch_reservation_detail(self, property_id: str, reservation_id: str) -> EnrichmentDetails:
        params = {"propertyID": property_id, "reservationID": reservation_id}
        logger.debug("Fetching reservation detail %s for property %s", reservation_id, property_id)
        payload = await self._get(RESERVATION_PATH, params, subject=f"Reservation {reservation_id}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise MalformedPayloadError(f"Reservation {reservation_id} detail payload has no data object")
        breakdown = data.get("balanceDetailed") or {}
        if not isinstance(breakdown, dict):
            breakdown = {}
        return EnrichmentDetails(
            total=parse_price(data.get("total")),
            net_price=parse_optional_price(breakdown.get("subTotal")),
            taxes=parse_optional_price(breakdown.get("taxesFees")),
        )

    async def _get(self, path: str, params: Dict[str, str], *, subject: str) -> Dict[str, Any]:
        url = f"{self._base_url}/{path}"
        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(
                f"Request to {path} timed out after {self._config.timeout_s}s"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network error calling {path}: {exc}") from exc

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError("Reservation API rejected the configured credentials", status=status)
        if status == 404:
            raise NotFoundError(f"{subject} not found", status=status)
        if not 200 <= status < 300:
            raise UpstreamServerError(
                f"Reservation API error ({status}): {response.text[:256]}", status=status
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedPayloadError(f"Response from {path} is not JSON") from exc
        if not isinstance(payload, dict) or not payload.get("success"):
            raise MalformedPayloadError(f"Unexpected response structure from {path}")
        return payload
