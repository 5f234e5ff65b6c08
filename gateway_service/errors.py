from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors rendered as ``{"error": {"code", "description"}}``."""

    code = "BAD_REQUEST_ERROR"
    status_code = 400
    default_description = "Bad request"

    def __init__(self, description: str | None = None):
        self.description = description or self.default_description
        super().__init__(self.description)

    def to_payload(self) -> dict:
        return {"error": {"code": self.code, "description": self.description}}


class BadRequestError(GatewayError):
    """Raised for malformed or out-of-range input."""


class AuthenticationError(GatewayError):
    """Raised for missing or unknown API credentials."""

    code = "AUTHENTICATION_ERROR"
    status_code = 401
    default_description = "Invalid API credentials"


class NotFoundError(GatewayError):
    """Raised when a resource is missing or owned by another merchant."""

    code = "NOT_FOUND_ERROR"
    status_code = 404
    default_description = "Resource not found"


class InvalidVpaError(GatewayError):
    code = "INVALID_VPA"
    default_description = "VPA format invalid"


class InvalidCardError(GatewayError):
    code = "INVALID_CARD"
    default_description = "Card validation failed"


class ExpiredCardError(GatewayError):
    code = "EXPIRED_CARD"
    default_description = "Card expiry date invalid"


class DuplicateIdError(Exception):
    """Raised by repositories when a generated primary key already exists."""
