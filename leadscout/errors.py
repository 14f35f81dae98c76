# leadscout/errors.py
"""Exceptions raised across the lead pipeline."""


class LeadScoutError(Exception):
    """Base class for pipeline errors."""


class UnresolvableLocation(LeadScoutError):
    """Neither the static city table nor the geocoder could place the location."""


class UpstreamError(LeadScoutError):
    """Transport failure or non-200 status from the spatial or geocoding service."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class GeocodingRateLimited(UpstreamError):
    """Geocoding service answered 403/429."""


class DetectionError(LeadScoutError):
    """A single website check failed. Never escapes the detector."""


class PersistenceReadMiss(LeadScoutError):
    """A durable slot has never been written."""


class StoreCorrupted(LeadScoutError):
    """A durable slot exists but does not hold valid JSON."""
