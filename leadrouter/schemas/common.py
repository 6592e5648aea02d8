"""
Common schemas used across multiple endpoints.
"""
from pydantic import BaseModel


class MessageResponse(BaseModel):
    """Simple message response."""
    message: str

    class Config:
        json_schema_extra = {"example": {"message": "Operation successful"}}


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Structured error returned by every endpoint."""
    error: ErrorDetail

    class Config:
        json_schema_extra = {"example": {"error": {"code": "missing_identity", "message": "No usable email or phone"}}}


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str = "1.0.0"
