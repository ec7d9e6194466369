"""Service clients for the upstream reservation API."""

from .reservations_client import (
    AuthenticationError,
    CloudbedsClient,
    ConfigurationError,
    EnrichmentDetails,
    MalformedPayloadError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ReservationApiConfig,
    ReservationApiError,
    UpstreamServerError,
)

__all__ = [
    "AuthenticationError",
    "CloudbedsClient",
    "ConfigurationError",
    "EnrichmentDetails",
    "MalformedPayloadError",
    "NetworkError",
    "NotFoundError",
    "RequestTimeoutError",
    "ReservationApiConfig",
    "ReservationApiError",
    "UpstreamServerError",
]
