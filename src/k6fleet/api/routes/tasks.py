"""Task and script administration endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from k6fleet import tasks
from k6fleet.api.deps import AdminDep, SessionDep
from k6fleet.storage.models import TaskStatus
from k6fleet.tasks import (
    ScriptCreate,
    ScriptRecord,
    TaskCreate,
    TaskPage,
    TaskQuery,
    TaskRecord,
    TaskStatistics,
)

router = APIRouter(tags=["tasks"])


@router.post("/scripts", response_model=ScriptRecord, status_code=status.HTTP_201_CREATED)
def create_script(payload: ScriptCreate, session: SessionDep, _user: AdminDep) -> ScriptRecord:
    return ScriptRecord.model_validate(tasks.create_script(session, payload))


@router.get("/scripts/{script_id}", response_model=ScriptRecord)
def get_script(script_id: str, session: SessionDep, _user: AdminDep) -> ScriptRecord:
    return ScriptRecord.model_validate(tasks.get_script(session, script_id))


@router.post("/tasks", response_model=TaskRecord, status_code=status.HTTP_201_CREATED)
def create_task(payload: TaskCreate, session: SessionDep, user: AdminDep) -> TaskRecord:
    return TaskRecord.model_validate(tasks.create_task(session, payload, creator_id=user))


@router.get("/tasks", response_model=TaskPage)
def list_tasks(
    session: SessionDep,
    _user: AdminDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    status_filter: Annotated[TaskStatus | None, Query(alias="status")] = None,
    script_id: str | None = None,
    agent_id: str | None = None,
) -> TaskPage:
    query = TaskQuery(
        page=page, limit=limit, status=status_filter, script_id=script_id, agent_id=agent_id
    )
    rows, total = tasks.list_tasks(session, query)
    return TaskPage(data=[TaskRecord.model_validate(row) for row in rows], total=total)


@router.get("/tasks/statistics", response_model=TaskStatistics)
def statistics(session: SessionDep, _user: AdminDep) -> TaskStatistics:
    return tasks.task_statistics(session)


@router.get("/tasks/{task_id}", response_model=TaskRecord)
def get_task(task_id: str, session: SessionDep, _user: AdminDep) -> TaskRecord:
    return TaskRecord.model_validate(tasks.get_task(session, task_id))


@router.post("/tasks/{task_id}/stop", response_model=TaskRecord)
def stop_task(task_id: str, session: SessionDep, _user: AdminDep) -> TaskRecord:
    return TaskRecord.model_validate(tasks.stop_task(session, task_id))
