"""Pydantic models for ForgeQuota."""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[dict] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    status: str = Field("healthy", description="Service status")
    database: str = Field("ok", description="Database reachability")


class ServerInfo(BaseModel):
    """Server information response."""

    version: str = Field(..., description="Server version")
    quota_enabled: bool = Field(..., description="Whether writes are gated by quotas")
    default_groups: list[str] = Field(default_factory=list, description="Fallback quota groups")
    subjects: list[str] = Field(default_factory=list, description="Known limit subjects")
    operations: list[str] = Field(default_factory=list, description="Operations the enforcer classifies")
