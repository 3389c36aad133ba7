"""
Epic Creation Tests
===================

Creating an epic from a manually written task list.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from orchestra.core.models import Credential, Epic, EpicStatus, Repository, Task, TaskStatus, User
from orchestra.core.orchestration.epics import (
    TITLE_MAX_LENGTH,
    create_epic_from_manual_spec,
    manual_spec_title,
)
from orchestra.core.orchestration.errors import ValidationError


async def count(db_session, model) -> int:
    result = await db_session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestManualSpecTitle:
    def test_short_title_kept(self):
        assert manual_spec_title("Add login page") == "Add login page"

    def test_long_title_truncated(self):
        title = manual_spec_title("x" * 80)
        assert len(title) == TITLE_MAX_LENGTH
        assert title.endswith("...")


class TestCreateEpic:
    """Valid task lists produce a pending epic with ordered tasks."""

    async def test_creates_tasks_in_order(
        self, db_session, test_user: User, repository: Repository
    ):
        epic, tasks = await create_epic_from_manual_spec(
            db_session,
            test_user,
            repository,
            ["Add model", "Add API", "Add UI"],
        )

        assert epic.status == EpicStatus.PENDING
        assert epic.base_branch == "main"
        assert epic.title == "Add model"
        assert epic.prompt == "Manual spec with 3 tasks"
        assert [(t.position, t.description, t.status) for t in tasks] == [
            (0, "Add model", TaskStatus.PENDING),
            (1, "Add API", TaskStatus.PENDING),
            (2, "Add UI", TaskStatus.PENDING),
        ]
        assert await count(db_session, Task) == 3

    async def test_custom_branch_and_credential(
        self, db_session, test_user: User, repository: Repository, cursor_credential: Credential
    ):
        epic, _ = await create_epic_from_manual_spec(
            db_session,
            test_user,
            repository,
            ["Only task"],
            base_branch="develop",
            cursor_agent_credential_id=cursor_credential.id,
        )

        assert epic.base_branch == "develop"
        assert epic.cursor_agent_credential_id == cursor_credential.id


class TestCreateEpicRejections:
    """Invalid input writes nothing."""

    @pytest.mark.parametrize(
        "tasks",
        [[], ["ok", "   "], ["ok", 3], "not a list"],
    )
    async def test_bad_task_lists(self, db_session, test_user: User, repository: Repository, tasks):
        with pytest.raises(ValidationError):
            await create_epic_from_manual_spec(db_session, test_user, repository, tasks)

        assert await count(db_session, Epic) == 0
        assert await count(db_session, Task) == 0

    async def test_blank_entries_reported_by_index(
        self, db_session, test_user: User, repository: Repository
    ):
        with pytest.raises(ValidationError) as exc_info:
            await create_epic_from_manual_spec(db_session, test_user, repository, ["a", "", "c", " "])

        assert exc_info.value.details["tasks"] == [
            "task at index 1 cannot be blank",
            "task at index 3 cannot be blank",
        ]

    async def test_foreign_repository(
        self, db_session, other_user: User, repository: Repository
    ):
        with pytest.raises(ValidationError):
            await create_epic_from_manual_spec(db_session, other_user, repository, ["task"])

        assert await count(db_session, Epic) == 0

    async def test_unknown_credential(
        self, db_session, test_user: User, repository: Repository
    ):
        with pytest.raises(ValidationError):
            await create_epic_from_manual_spec(
                db_session, test_user, repository, ["task"], cursor_agent_credential_id=uuid4()
            )

    async def test_wrong_service_credential(
        self, db_session, test_user: User, repository: Repository, github_credential: Credential
    ):
        with pytest.raises(ValidationError) as exc_info:
            await create_epic_from_manual_spec(
                db_session,
                test_user,
                repository,
                ["task"],
                cursor_agent_credential_id=github_credential.id,
            )

        assert "cursor_agent" in exc_info.value.message
        assert await count(db_session, Epic) == 0
