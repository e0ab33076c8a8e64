"""Task and script catalog."""

from k6fleet.tasks.models import (
    ScriptCreate,
    ScriptRecord,
    Stage,
    TaskConfig,
    TaskCreate,
    TaskPage,
    TaskQuery,
    TaskRecord,
    TaskStatistics,
)
from k6fleet.tasks.service import (
    create_script,
    create_task,
    get_script,
    get_task,
    list_tasks,
    stop_task,
    task_statistics,
)

__all__ = [
    "ScriptCreate",
    "ScriptRecord",
    "Stage",
    "TaskConfig",
    "TaskCreate",
    "TaskPage",
    "TaskQuery",
    "TaskRecord",
    "TaskStatistics",
    "create_script",
    "create_task",
    "get_script",
    "get_task",
    "list_tasks",
    "stop_task",
    "task_statistics",
]
