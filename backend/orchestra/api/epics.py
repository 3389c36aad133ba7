"""
Orchestra - Epics API
=====================

Create epics from a manual task list, start them, dispatch their next
task by hand, and watch their tasks change live.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, WebSocket, status
from sqlalchemy import select

from orchestra.api.deps import (
    Broadcaster,
    CurrentUser,
    DbSession,
    Launcher,
    Queue,
    user_from_token,
)
from orchestra.core.models import Epic, Repository
from orchestra.core.orchestration.dispatch import AgentDispatchPipeline
from orchestra.core.orchestration.epics import EpicStartWorkflow, create_epic_from_manual_spec
from orchestra.core.orchestration.errors import NotFoundError, PreconditionError
from orchestra.core.orchestration.lookups import first_pending_task, get_epic
from orchestra.core.orchestration.notifications import epic_channel, epic_websocket_endpoint
from orchestra.core.orchestration.transitions import StatusTransitionEngine
from orchestra.core.schemas import DispatchResponse, EpicCreate, EpicResponse, EpicSummary

logger = structlog.get_logger()

router = APIRouter(prefix="/epics", tags=["Epics"])


# ==========================================================================
# Helper Functions
# ==========================================================================

async def get_epic_or_404(epic_id: UUID, user_id: UUID, db) -> Epic:
    """Get the caller's epic by ID or raise 404."""
    epic = await get_epic(db, epic_id, user_id=user_id)
    if epic is None:
        raise NotFoundError("Epic", str(epic_id))
    return epic


# ==========================================================================
# Endpoints
# ==========================================================================

@router.post(
    "",
    response_model=EpicResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an epic from a task list",
)
async def create_epic(
    data: EpicCreate,
    current_user: CurrentUser,
    db: DbSession,
) -> Epic:
    """Create a pending epic with one task per entry, in list order."""
    result = await db.execute(
        select(Repository).where(
            Repository.id == data.repository_id,
            Repository.user_id == current_user.id,
        )
    )
    repository = result.scalar_one_or_none()
    if repository is None:
        raise NotFoundError("Repository", str(data.repository_id))

    epic, tasks = await create_epic_from_manual_spec(
        db,
        current_user,
        repository,
        data.tasks,
        base_branch=data.base_branch,
        cursor_agent_credential_id=data.cursor_agent_credential_id,
    )

    logger.info("epic_created", epic_id=str(epic.id), task_count=len(tasks))
    return epic


@router.get(
    "",
    response_model=list[EpicSummary],
    summary="List the caller's epics",
)
async def list_epics(
    current_user: CurrentUser,
    db: DbSession,
) -> list[Epic]:
    result = await db.execute(
        select(Epic)
        .where(Epic.user_id == current_user.id)
        .order_by(Epic.created_at.desc())
    )
    return list(result.scalars().all())


@router.get(
    "/{epic_id}",
    response_model=EpicResponse,
    summary="Get an epic with its tasks",
)
async def get_epic_detail(
    epic_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> Epic:
    return await get_epic_or_404(epic_id, current_user.id, db)


@router.post(
    "/{epic_id}/start",
    response_model=EpicResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start an epic",
)
async def start_epic(
    epic_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    queue: Queue,
    broadcaster: Broadcaster,
) -> Epic:
    """Move the epic to running and queue its first pending task."""
    epic = await get_epic_or_404(epic_id, current_user.id, db)
    epic = await EpicStartWorkflow(db, queue, broadcaster).start(current_user, epic)

    logger.info("epic_started", epic_id=str(epic.id))
    return epic


@router.post(
    "/{epic_id}/dispatch",
    response_model=DispatchResponse,
    summary="Dispatch the next pending task now",
)
async def dispatch_next_task(
    epic_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    broadcaster: Broadcaster,
    launcher_factory: Launcher,
) -> DispatchResponse:
    """Run the dispatch pipeline inline for the lowest-position pending task."""
    epic = await get_epic_or_404(epic_id, current_user.id, db)

    task = await first_pending_task(db, epic.id)
    if task is None:
        raise PreconditionError(
            "No pending tasks available to dispatch",
            details={"epic_id": str(epic.id)},
        )

    pipeline = AgentDispatchPipeline(db, StatusTransitionEngine(db, broadcaster), launcher_factory)
    result = await pipeline.dispatch(task)

    logger.info(
        "task_dispatched",
        epic_id=str(epic.id),
        task_id=str(result.task.id),
        agent_id=result.agent_id,
    )
    return DispatchResponse(
        task_id=result.task.id,
        agent_id=result.agent_id,
        branch_name=result.branch_name,
    )


@router.websocket("/{epic_id}/ws")
async def epic_updates(
    websocket: WebSocket,
    epic_id: UUID,
    broadcaster: Broadcaster,
    db: DbSession,
    token: str = Query(...),
):
    """Live task and epic updates. Browsers pass the access token as ``token``."""
    try:
        user = await user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    epic = await get_epic(db, epic_id, user_id=user.id)
    if epic is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await epic_websocket_endpoint(websocket, epic_channel(epic.id), broadcaster)
