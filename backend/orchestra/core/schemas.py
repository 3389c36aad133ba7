"""
Orchestra - Pydantic Schemas
============================

Request and response schemas for API validation and for the payloads
broadcast to live observers.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orchestra.core.models import EpicStatus, TaskStatus


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


# ==========================================================================
# Task Schemas
# ==========================================================================

class TaskResponse(TimestampSchema):
    """Task as shown to users and live observers."""

    id: UUID
    epic_id: UUID
    description: str
    position: int
    status: TaskStatus
    cursor_agent_id: Optional[str] = None
    branch_name: Optional[str] = None
    pr_url: Optional[str] = None
    debug_log: Optional[str] = None


# ==========================================================================
# Epic Schemas
# ==========================================================================

class EpicCreate(BaseSchema):
    """Create an epic from a manually written task list."""

    repository_id: UUID
    tasks: list[str] = Field(min_length=1)
    base_branch: str = Field("main", min_length=1, max_length=255)
    cursor_agent_credential_id: Optional[UUID] = None

    @field_validator("tasks")
    @classmethod
    def validate_tasks(cls, v: list[str]) -> list[str]:
        """Every task needs a non-blank description."""
        for index, description in enumerate(v):
            if not description.strip():
                raise ValueError(f"Task at index {index} cannot be blank")
        return v


class EpicResponse(TimestampSchema):
    """Epic with its tasks in position order."""

    id: UUID
    user_id: UUID
    repository_id: UUID
    title: str
    prompt: Optional[str] = None
    base_branch: str
    status: EpicStatus
    llm_credential_id: Optional[UUID] = None
    cursor_agent_credential_id: Optional[UUID] = None
    tasks: list[TaskResponse] = []


class EpicSummary(TimestampSchema):
    """Epic without tasks, for listings."""

    id: UUID
    repository_id: UUID
    title: str
    base_branch: str
    status: EpicStatus


class DispatchResponse(BaseSchema):
    """Result of a synchronous agent dispatch."""

    task_id: UUID
    agent_id: str
    branch_name: str


class JobEnqueuedResponse(BaseSchema):
    """A pipeline job accepted by the queue."""

    job_id: str
    job_name: str
    task_id: UUID


# ==========================================================================
# Webhook Schemas
# ==========================================================================

class WebhookAccepted(BaseModel):
    """Body returned to the agent platform for any handled callback."""

    success: bool = True
    task_id: str
    status: str


# ==========================================================================
# Common Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
    queue: str
