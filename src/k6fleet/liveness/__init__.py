"""Agent liveness sweeping."""

from k6fleet.liveness.sweeper import (
    LOST_EXECUTOR_MESSAGE,
    LivenessSweeper,
    SweepReport,
    sweep_stale_agents,
)

__all__ = [
    "LivenessSweeper",
    "SweepReport",
    "sweep_stale_agents",
    "LOST_EXECUTOR_MESSAGE",
]
