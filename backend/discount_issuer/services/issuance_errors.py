from __future__ import annotations

from fastapi import status


class IssuanceError(Exception):
    """Terminal failure of a discount issuance request."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "issuance_error"
    default_message: str = "Discount issuance failed"

    def __init__(self, message: str | None = None, *, headers: dict[str, str] | None = None) -> None:
        self.message = message or self.default_message
        self.headers = headers or {}
        super().__init__(self.message)


class InvalidRequest(IssuanceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_request"
    default_message = "Invalid request"


class Unauthorized(IssuanceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"
    default_message = "Invalid session"


class CampaignUnavailable(IssuanceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "campaign_unavailable"
    default_message = "Campaign not found or inactive"


class RateLimited(IssuanceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "too_many_requests"
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, *, retry_after_seconds: int | None = None) -> None:
        headers = {"Retry-After": str(retry_after_seconds)} if retry_after_seconds else None
        super().__init__(message, headers=headers)
        self.retry_after_seconds = retry_after_seconds


class DiscountDisabled(IssuanceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "discount_disabled"
    default_message = "Discount not enabled for this campaign"


class ProvisioningFailed(IssuanceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "provisioning_failed"
    default_message = "Failed to generate discount code"

    @classmethod
    def from_errors(cls, errors: list[str] | None) -> "ProvisioningFailed":
        first = next((str(err).strip() for err in errors or [] if str(err).strip()), None)
        return cls(first)
