"""Service-layer exceptions.

Raised by registry, dispatch and task operations. The API layer maps each
class to an HTTP status; nothing below it knows about transport.
"""

from __future__ import annotations


class K6FleetError(Exception):
    """Base class for errors raised by k6fleet operations."""

    pass


class NotFoundError(K6FleetError):
    """Referenced agent, task or script does not exist."""

    pass


class ForbiddenError(K6FleetError):
    """Caller is known but not entitled to act on the resource.

    For status reports this means the reporting agent is not the one the
    task is bound to.
    """

    pass


class ConflictError(K6FleetError):
    """Requested transition contradicts the current state.

    Examples: starting an agent that is already online, stopping a task
    that already finished.
    """

    pass
