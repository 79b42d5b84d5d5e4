"""
Exceptions raised by the outbound service connectors.

Each carries the HTTP status code the failure should surface as and logs
itself when constructed, so callers only need to translate it into a
response.
"""

import logging

logger = logging.getLogger(__name__)


class ConnectorError(Exception):
    """Base class for connector failures."""

    service_name = "Service"

    def __init__(self, message: str = "", status_code: int = 0):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        logger.error(f"{type(self).__name__} occurred: {message} (code={status_code})")

    @classmethod
    def service_unavailable(cls, reason: str | None = None, status_code: int = 503):
        reason = reason or f"{cls.service_name} is unavailable"
        return cls(f"{cls.service_name} service is unavailable: {reason}", status_code)

    @classmethod
    def request_failed(cls, reason: str | None = None, status_code: int = 500):
        reason = reason or f"Request to {cls.service_name} failed"
        return cls(f"{cls.service_name} request failed: {reason}", status_code)

    @classmethod
    def configuration_error(cls, config_key: str):
        return cls(f"{cls.service_name} configuration error: Missing or invalid '{config_key}'", 500)

    @classmethod
    def authentication_error(cls, reason: str = "Invalid API key"):
        return cls(f"{cls.service_name} authentication failed: {reason}", 401)

    @classmethod
    def rate_limit_exceeded(cls, reason: str = "Rate limit exceeded"):
        return cls(f"{cls.service_name} rate limit exceeded: {reason}", 429)

    @classmethod
    def not_found(cls, reason: str = "Resource not found"):
        return cls(f"{cls.service_name} resource not found: {reason}", 404)

    @classmethod
    def bad_request(cls, reason: str = "Bad request"):
        return cls(f"{cls.service_name} bad request: {reason}", 400)

    @classmethod
    def from_status(cls, status_code: int, reason: str):
        """Map a non-2xx upstream status onto the matching factory."""
        if status_code == 400:
            return cls.bad_request(reason)
        if status_code == 401:
            return cls.authentication_error(reason)
        if status_code == 403:
            return cls.authentication_error("Access forbidden")
        if status_code == 404:
            return cls.not_found(reason)
        if status_code == 429:
            return cls.rate_limit_exceeded(reason)
        if status_code == 503:
            return cls.service_unavailable(reason)
        return cls.request_failed(reason, status_code)


class ParserServiceError(ConnectorError):
    """Failure talking to the external demo parser."""

    service_name = "Parser service"

    @classmethod
    def service_unavailable(cls, reason: str = "Service health check failed", status_code: int = 503):
        return cls(f"Parser service is unavailable: {reason}", status_code)

    @classmethod
    def upload_failed(cls, reason: str = "Demo upload failed", status_code: int = 500):
        return cls(f"Demo upload failed: {reason}", status_code)

    @classmethod
    def timeout_error(cls, timeout: int | float):
        return cls(f"Parser service request timed out after {timeout:g} seconds", 408)


class FaceITError(ConnectorError):
    service_name = "FACEIT API"

    @classmethod
    def timeout_error(cls, timeout: int | float):
        return cls(f"FACEIT API request timed out after {timeout:g} seconds", 408)


class DiscordError(ConnectorError):
    service_name = "Discord API"

    @classmethod
    def authentication_error(cls, reason: str = "Invalid bot token"):
        return cls(f"Discord API authentication failed: {reason}", 401)

    @classmethod
    def forbidden(cls, reason: str = "Access forbidden"):
        return cls(f"Discord API access forbidden: {reason}", 403)

    @classmethod
    def from_status(cls, status_code: int, reason: str):
        if status_code == 403:
            return cls.forbidden(reason)
        return super().from_status(status_code, reason)
