"""
Orchestra - Database Models
===========================

SQLAlchemy models for users, their credentials and repositories, and the
epics/tasks the orchestration core drives.

Task status, pr_url and debug_log are written only by the status
transition engine (orchestra.core.orchestration.transitions).
"""

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orchestra.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_values(enum_class: type[enum.Enum]) -> list[str]:
    """Persist enum values ('pr_open') rather than member names ('PR_OPEN')."""
    return [member.value for member in enum_class]


# ==========================================================================
# Enums
# ==========================================================================

class EpicStatus(str, enum.Enum):
    """Lifecycle of an epic."""
    PENDING = "pending"
    GENERATING_SPEC = "generating_spec"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, enum.Enum):
    """Lifecycle of a task: pending → running → pr_open → merging → completed."""
    PENDING = "pending"
    RUNNING = "running"
    PR_OPEN = "pr_open"        # Agent finished, pull request exists
    MERGING = "merging"        # Pull request merged, branch cleaned up
    COMPLETED = "completed"
    FAILED = "failed"          # Reachable from any non-terminal state


class CredentialService(str, enum.Enum):
    """Services a stored credential can authenticate against."""
    GITHUB = "github"
    CURSOR_AGENT = "cursor_agent"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ==========================================================================
# Models
# ==========================================================================

class User(Base, TimestampMixin):
    """Account owning credentials, repositories and epics."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # Relationships
    credentials: Mapped[list["Credential"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )
    repositories: Mapped[list["Repository"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )
    epics: Mapped[list["Epic"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )
    notification_channels: Mapped[list["NotificationChannel"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Credential(Base, TimestampMixin):
    """
    API key for an external service.

    Encryption at rest is handled outside this service.
    """

    __tablename__ = "credentials"
    __table_args__ = (
        UniqueConstraint("user_id", "service_name", "name", name="uq_credentials_user_service_name"),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    api_key: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
    )

    user: Mapped["User"] = relationship(back_populates="credentials")

    def __repr__(self) -> str:
        return f"<Credential {self.service_name}:{self.name}>"


class Repository(Base, TimestampMixin):
    """GitHub repository epics run against."""

    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_repositories_user_name"),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    github_credential_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("credentials.id"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )  # owner/repo
    github_url: Mapped[str] = mapped_column(
        String(2000),
        nullable=False,
    )

    user: Mapped["User"] = relationship(back_populates="repositories")
    github_credential: Mapped[Optional["Credential"]] = relationship(
        foreign_keys=[github_credential_id],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Repository {self.name}>"


class Epic(Base, TimestampMixin):
    """
    A unit of work grouped into ordered tasks against one repository.

    The two credential roles are explicit columns rather than a
    polymorphic association.
    """

    __tablename__ = "epics"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    repository_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("repositories.id"),
        nullable=False,
        index=True,
    )
    llm_credential_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("credentials.id"),
        nullable=True,
        index=True,
    )
    cursor_agent_credential_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("credentials.id"),
        nullable=True,
        index=True,
    )

    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    prompt: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    base_branch: Mapped[str] = mapped_column(
        String(255),
        default="main",
        nullable=False,
    )
    status: Mapped[EpicStatus] = mapped_column(
        Enum(EpicStatus, values_callable=enum_values),
        default=EpicStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="epics")
    repository: Mapped["Repository"] = relationship(lazy="selectin")
    llm_credential: Mapped[Optional["Credential"]] = relationship(
        foreign_keys=[llm_credential_id],
        lazy="selectin",
    )
    cursor_agent_credential: Mapped[Optional["Credential"]] = relationship(
        foreign_keys=[cursor_agent_credential_id],
        lazy="selectin",
    )
    tasks: Mapped[list["Task"]] = relationship(
        back_populates="epic",
        order_by="Task.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Epic {self.title[:50]}>"


class Task(Base, TimestampMixin):
    """One unit of externally executed work within an epic."""

    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("epic_id", "position", name="uq_tasks_epic_position"),
        CheckConstraint("position >= 0", name="ck_tasks_position_non_negative"),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    epic_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("epics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, values_callable=enum_values),
        default=TaskStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Agent run
    cursor_agent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    branch_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    pr_url: Mapped[Optional[str]] = mapped_column(
        String(2000),
        nullable=True,
    )

    # Newline-delimited "[YYYY-MM-DD HH:MM:SS] message" lines, append-only
    debug_log: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    epic: Mapped["Epic"] = relationship(
        back_populates="tasks",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Task {self.position}: {self.status.value if self.status else None}>"


class NotificationChannel(Base, TimestampMixin):
    """Chat channel a user wants progress messages delivered to."""

    __tablename__ = "notification_channels"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "service_name", "channel_id",
            name="uq_notification_channels_user_service_channel",
        ),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    channel_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    user: Mapped["User"] = relationship(back_populates="notification_channels")

    def __repr__(self) -> str:
        return f"<NotificationChannel {self.service_name}:{self.channel_id}>"
