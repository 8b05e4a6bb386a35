"""
Marketplace error taxonomy

Domain code raises these; the HTTP layer (see main.py) maps them to status codes.
Webhook handlers decide per error whether an event is acknowledged or retried.
"""

from typing import Optional


class MarketplaceError(Exception):
    """Base class for expected, classified failures"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationError(MarketplaceError):
    """Malformed input: webhook body, correlation reference, booking payload"""

    status_code = 400


class NotFoundError(MarketplaceError):
    """Referenced plan, subscription or booking does not exist"""

    status_code = 404

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} not found: {resource_id}")
        self.resource = resource
        self.resource_id = resource_id


class ForbiddenError(MarketplaceError):
    """Actor is not allowed to perform the operation"""

    status_code = 403


class UpstreamError(MarketplaceError):
    """Payment processor unreachable, timed out or answered non-2xx.

    Always propagated: the webhook transport must answer 5xx so the processor retries.
    """

    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class ConflictError(MarketplaceError):
    """Operation not permitted from the current status (booking transition, duplicate subscription)"""

    status_code = 409

    def __init__(
        self,
        current_status: str,
        attempted_status: str,
        action: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.action = action
        label = action or attempted_status
        super().__init__(
            message
            or f"Cannot {label.replace('_', ' ')} a booking that is {current_status.replace('_', ' ')}"
        )

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "currentStatus": self.current_status,
            "attemptedStatus": self.attempted_status,
        }


class PartialFailure(MarketplaceError):
    """External system changed but the local commit failed (dual-write divergence).

    Neither success nor ordinary failure: an operator has to reconcile the two sides.
    """

    status_code = 500

    def __init__(self, message: str, external_result: Optional[dict] = None):
        super().__init__(message)
        self.external_result = external_result

    def to_dict(self) -> dict:
        return {"detail": self.message, "partialFailure": True}
