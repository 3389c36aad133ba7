"""
Orchestra - Test Fixtures
=========================

Shared pytest fixtures for all tests.
"""

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from orchestra.api.deps import (
    create_access_token,
    get_job_queue,
    get_launcher_factory,
    get_notifier,
)
from orchestra.api.main import app
from orchestra.core.database import Base, get_db
from orchestra.core.models import (
    Credential,
    CredentialService,
    Epic,
    EpicStatus,
    Repository,
    Task,
    TaskStatus,
    User,
)
from orchestra.core.orchestration.lookups import get_epic, get_task
from orchestra.core.orchestration.queue import InMemoryJobQueue
from orchestra.core.orchestration.transitions import StatusTransitionEngine


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean database session for each test."""
    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def second_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """An independent session on the same database, for interleaved writers."""
    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_factory(db_session: AsyncSession):
    """Job-handler session factory that hands out the test session."""

    @asynccontextmanager
    async def factory():
        yield db_session

    return factory


# ==========================================================================
# Collaborator Doubles
# ==========================================================================

class RecordingNotifier:
    """Collects every notification instead of sending it."""

    def __init__(self):
        self.messages: list[tuple[str, dict[str, Any]]] = []

    async def notify(self, channel: str, payload: dict[str, Any]) -> None:
        self.messages.append((channel, payload))

    def types(self) -> list[str]:
        return [payload["type"] for _, payload in self.messages]


class FailingNotifier:
    """Notifier whose transport is always down."""

    def __init__(self):
        self.attempts = 0

    async def notify(self, channel: str, payload: dict[str, Any]) -> None:
        self.attempts += 1
        raise ConnectionError("subscriber socket closed")


class FakeLauncher:
    """
    Agent launcher double; also acts as its own factory.

    ``response`` is returned from launch_agent unless ``error`` is set.
    """

    def __init__(self, response: Optional[dict[str, Any]] = None, error: Optional[Exception] = None):
        self.response = {"id": "agent-123", "status": "CREATING"} if response is None else response
        self.error = error
        self.credentials: list[Credential] = []
        self.calls: list[dict[str, Any]] = []

    def __call__(self, credential: Credential) -> "FakeLauncher":
        self.credentials.append(credential)
        return self

    async def launch_agent(self, task: Task, webhook_url: str, branch_name: str) -> dict[str, Any]:
        self.calls.append({
            "task_id": task.id,
            "description": task.description,
            "webhook_url": webhook_url,
            "branch_name": branch_name,
        })
        if self.error is not None:
            raise self.error
        return self.response


class FakeSourceControl:
    """Source-control double; also acts as its own factory."""

    def __init__(
        self,
        merge_sha: str = "abc123def456",
        merge_error: Optional[Exception] = None,
        delete_error: Optional[Exception] = None,
    ):
        self.merge_sha = merge_sha
        self.merge_error = merge_error
        self.delete_error = delete_error
        self.credentials: list[Credential] = []
        self.merged: list[str] = []
        self.deleted: list[str] = []

    def __call__(self, credential: Credential) -> "FakeSourceControl":
        self.credentials.append(credential)
        return self

    async def merge_pull_request(self, task: Task) -> str:
        if self.merge_error is not None:
            raise self.merge_error
        self.merged.append(task.branch_name)
        return self.merge_sha

    async def delete_branch(self, task: Task) -> bool:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(task.branch_name)
        return True


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue(max_attempts=3)


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def fake_scm() -> FakeSourceControl:
    return FakeSourceControl()


@pytest.fixture
def engine(db_session: AsyncSession, notifier: RecordingNotifier) -> StatusTransitionEngine:
    return StatusTransitionEngine(db_session, notifier)


# ==========================================================================
# Record Fixtures
# ==========================================================================

async def _create_user(db_session: AsyncSession, email: str, name: str) -> User:
    user = User(id=uuid4(), email=email, name=name)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "test@example.com", "Test User")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "other@example.com", "Other User")


@pytest_asyncio.fixture
async def github_credential(db_session: AsyncSession, test_user: User) -> Credential:
    credential = Credential(
        id=uuid4(),
        user_id=test_user.id,
        service_name=CredentialService.GITHUB.value,
        name="GitHub token",
        api_key="ghp_test_token",
    )
    db_session.add(credential)
    await db_session.commit()
    return credential


@pytest_asyncio.fixture
async def cursor_credential(db_session: AsyncSession, test_user: User) -> Credential:
    credential = Credential(
        id=uuid4(),
        user_id=test_user.id,
        service_name=CredentialService.CURSOR_AGENT.value,
        name="Cursor key",
        api_key="cursor_test_key",
    )
    db_session.add(credential)
    await db_session.commit()
    return credential


@pytest_asyncio.fixture
async def repository(
    db_session: AsyncSession,
    test_user: User,
    github_credential: Credential,
) -> Repository:
    repo = Repository(
        id=uuid4(),
        user_id=test_user.id,
        github_credential_id=github_credential.id,
        name="acme/widgets",
        github_url="https://github.com/acme/widgets",
    )
    db_session.add(repo)
    await db_session.commit()
    return repo


@pytest.fixture
def make_epic(
    db_session: AsyncSession,
    test_user: User,
    repository: Repository,
    cursor_credential: Credential,
):
    """
    Factory for epics with tasks at the given positions.

    Tasks are inserted in the order given, which need not be position order.
    """

    async def factory(
        positions: Sequence[int] = (0, 1, 2),
        statuses: Optional[Sequence[TaskStatus]] = None,
        with_credential: bool = True,
        status: EpicStatus = EpicStatus.PENDING,
    ) -> Epic:
        statuses = statuses or [TaskStatus.PENDING] * len(positions)
        epic = Epic(
            id=uuid4(),
            user_id=test_user.id,
            repository_id=repository.id,
            cursor_agent_credential_id=cursor_credential.id if with_credential else None,
            title="Widget improvements",
            prompt=f"Manual spec with {len(positions)} tasks",
            base_branch="main",
            status=status,
        )
        db_session.add(epic)
        await db_session.flush()
        for position, task_status in zip(positions, statuses):
            db_session.add(Task(
                id=uuid4(),
                epic_id=epic.id,
                description=f"Task at position {position}",
                position=position,
                status=task_status,
            ))
            await db_session.flush()
        await db_session.commit()
        return await get_epic(db_session, epic.id)

    return factory


@pytest_asyncio.fixture
async def epic(make_epic) -> Epic:
    """Pending epic with three pending tasks at positions 0, 1, 2."""
    return await make_epic()


@pytest_asyncio.fixture
async def task(db_session: AsyncSession, epic: Epic) -> Task:
    """The position-0 task of ``epic``, fully loaded."""
    return await get_task(db_session, epic.tasks[0].id)


@pytest.fixture
def set_status(db_session: AsyncSession):
    """Put a task into a given state as test setup."""

    async def setter(task: Task, status: TaskStatus, **fields: Any) -> Task:
        task.status = status
        for name, value in fields.items():
            setattr(task, name, value)
        await db_session.commit()
        return task

    return setter


# ==========================================================================
# HTTP Fixtures
# ==========================================================================

@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    job_queue: InMemoryJobQueue,
    notifier: RecordingNotifier,
    fake_launcher: FakeLauncher,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide test HTTP client with database and collaborator overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_queue] = lambda: job_queue
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_launcher_factory] = lambda: fake_launcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """Get authorization headers for test user."""
    token = create_access_token(test_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_headers(other_user: User) -> dict[str, str]:
    token = create_access_token(other_user.id)
    return {"Authorization": f"Bearer {token}"}
