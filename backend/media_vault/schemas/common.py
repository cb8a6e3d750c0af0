"""Shared Pydantic schemas."""
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    database: str
