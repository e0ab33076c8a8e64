"""Agent endpoints.

The first four routes are the agent-facing protocol and carry no
authentication. Everything else is administration and requires a bearer
token.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, Response, status

from k6fleet import registry
from k6fleet.api.deps import AdminDep, DispatchSettingsDep, ResultSinkDep, SessionDep
from k6fleet.dispatch import Job, JobStatusReport, PollResponse, poll_jobs, update_job_status
from k6fleet.registry import (
    AgentCreate,
    AgentDescriptor,
    AgentPage,
    AgentQuery,
    AgentRecord,
    AgentStatistics,
    AgentUpdate,
    BatchRequest,
    BatchResult,
    HeartbeatRequest,
)
from k6fleet.schemas import Ack
from k6fleet.storage.models import AgentStatus
from k6fleet.tasks import TaskRecord

router = APIRouter(prefix="/agents", tags=["agents"])


# Agent-facing protocol


@router.post("/register", response_model=AgentRecord)
def register(
    descriptor: AgentDescriptor, session: SessionDep, settings: DispatchSettingsDep
) -> AgentRecord:
    agent = registry.register_or_update(
        session,
        descriptor,
        default_max_concurrent_tasks=settings.default_max_concurrent_tasks,
    )
    return AgentRecord.from_row(agent)


@router.post("/heartbeat", response_model=Ack)
def heartbeat(payload: HeartbeatRequest, session: SessionDep) -> Ack:
    registry.update_heartbeat(session, payload.agent_id, resources=payload.resources)
    return Ack(success=True, message="Heartbeat received")


@router.get("/jobs/poll", response_model=PollResponse)
def poll(
    agent_id: Annotated[str, Query(min_length=1)],
    session: SessionDep,
    settings: DispatchSettingsDep,
) -> PollResponse:
    result = poll_jobs(session, agent_id, batch_size=settings.poll_batch_size)
    return PollResponse(
        jobs=[Job.from_row(task) for task in result.jobs],
        has_more=result.has_more,
    )


@router.post("/jobs/{job_id}/status", response_model=Ack)
def report_status(
    job_id: str, report: JobStatusReport, session: SessionDep, sink: ResultSinkDep
) -> Ack:
    update_job_status(session, job_id, report, sink=sink)
    return Ack(success=True, message="Status updated")


# Administration


@router.post("", response_model=AgentRecord, status_code=status.HTTP_201_CREATED)
def create_agent(payload: AgentCreate, session: SessionDep, _user: AdminDep) -> AgentRecord:
    return AgentRecord.from_row(registry.create_agent(session, payload))


@router.get("", response_model=AgentPage)
def list_agents(
    session: SessionDep,
    _user: AdminDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    status_filter: Annotated[AgentStatus | None, Query(alias="status")] = None,
    hostname: str | None = None,
) -> AgentPage:
    query = AgentQuery(page=page, limit=limit, status=status_filter, hostname=hostname)
    rows, total = registry.list_agents(session, query)
    return AgentPage(data=[AgentRecord.from_row(row) for row in rows], total=total)


@router.get("/statistics", response_model=AgentStatistics)
def statistics(session: SessionDep, _user: AdminDep) -> AgentStatistics:
    return registry.agent_statistics(session)


@router.post("/batch/enable", response_model=BatchResult)
def batch_enable(payload: BatchRequest, session: SessionDep, _user: AdminDep) -> BatchResult:
    return registry.batch_enable(session, payload.ids)


@router.post("/batch/disable", response_model=BatchResult)
def batch_disable(payload: BatchRequest, session: SessionDep, _user: AdminDep) -> BatchResult:
    return registry.batch_disable(session, payload.ids)


@router.get("/{agent_id}", response_model=AgentRecord)
def get_agent(agent_id: str, session: SessionDep, _user: AdminDep) -> AgentRecord:
    return AgentRecord.from_row(registry.get_agent(session, agent_id))


@router.put("/{agent_id}", response_model=AgentRecord)
def update_agent(
    agent_id: str, payload: AgentUpdate, session: SessionDep, _user: AdminDep
) -> AgentRecord:
    return AgentRecord.from_row(registry.update_agent(session, agent_id, payload))


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_agent(agent_id: str, session: SessionDep, _user: AdminDep) -> Response:
    registry.remove_agent(session, agent_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{agent_id}/enable", response_model=AgentRecord)
def enable_agent(agent_id: str, session: SessionDep, _user: AdminDep) -> AgentRecord:
    return AgentRecord.from_row(registry.start(session, agent_id))


@router.post("/{agent_id}/disable", response_model=AgentRecord)
def disable_agent(agent_id: str, session: SessionDep, _user: AdminDep) -> AgentRecord:
    return AgentRecord.from_row(registry.stop(session, agent_id))


@router.get("/{agent_id}/tasks", response_model=list[TaskRecord])
def agent_tasks(agent_id: str, session: SessionDep, _user: AdminDep) -> list[TaskRecord]:
    rows = registry.list_agent_tasks(session, agent_id)
    return [TaskRecord.model_validate(row) for row in rows]
