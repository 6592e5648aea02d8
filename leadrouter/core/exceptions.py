"""
Custom exceptions for the lead router.
Every exception carries a stable code and an HTTP status so ingestion
endpoints can return a structured error.
"""
from fastapi import HTTPException, status


class LeadRouterException(Exception):
    """Base exception for the lead router"""
    code = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "An error occurred", code: str = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(LeadRouterException):
    """Candidate is missing identity or a required field. Rejected, not retried."""
    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str = "Validation failed", field: str = None, code: str = None):
        if field:
            message = f"Validation failed for field '{field}': {message}"
        super().__init__(message, code)


class ClassificationRejected(LeadRouterException):
    """Not a lead, or classifier confidence under the threshold. Terminal."""
    code = "not_a_lead"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, reason: str = "not_a_lead", confidence: float = None):
        self.confidence = confidence
        if reason == "low_confidence":
            message = f"Classifier confidence {confidence} is below the lead threshold"
        else:
            message = "Message was not classified as a lead"
        super().__init__(message, reason)


class DuplicateAlreadyProcessed(LeadRouterException):
    """Source event was already processed. Idempotent short-circuit, not a failure."""
    code = "already_processed"
    status_code = status.HTTP_200_OK

    def __init__(self, message_id: str, person_id=None):
        self.message_id = message_id
        self.person_id = person_id
        super().__init__(f"Message '{message_id}' was already processed")


class NoEligibleAgent(LeadRouterException):
    """Rotation has no active agent. The lead stays in staging."""
    code = "no_eligible_agent"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "No active agent in the rotation"):
        super().__init__(message)


class RotationConflict(LeadRouterException):
    """Cursor moved underneath a claim. Retried by the caller."""
    code = "rotation_conflict"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Rotation cursor changed concurrently"):
        super().__init__(message)


class UpstreamUnavailable(LeadRouterException):
    """Mailbox provider or classifier call failed. Retried on the next trigger."""
    code = "upstream_unavailable"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, service: str = "External service", message: str = None):
        msg = f"{service} call failed"
        if message:
            msg = f"{msg}: {message}"
        super().__init__(msg)


class TokenInvalid(LeadRouterException):
    """Mailbox token rejected and could not be refreshed."""
    code = "token_invalid"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, token_type: str = "Token", message: str = None):
        super().__init__(message or f"{token_type} is invalid")


class NotFoundError(LeadRouterException):
    """Resource not found"""
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str = "Resource", resource_id: str = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(message)


class InvalidTransition(LeadRouterException):
    """Requested lead_status move is not allowed"""
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current: str, requested: str, message: str = None):
        super().__init__(message or f"Cannot move lead from '{current}' to '{requested}'")


class UnauthorizedError(LeadRouterException):
    """Authentication failed"""
    code = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


# HTTP Exception helpers
def raise_not_found(resource: str = "Resource", resource_id: str = None):
    """Raise 404 HTTPException"""
    err = NotFoundError(resource, resource_id)
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=err.message)


def raise_unauthorized(message: str = "Could not validate credentials"):
    """Raise 401 HTTPException"""
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )
