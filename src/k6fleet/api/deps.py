"""Request-scoped dependencies: database session and admin authentication."""

from __future__ import annotations

import secrets
from collections.abc import Iterator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from k6fleet.config import DispatchSettings
from k6fleet.dispatch.results import ResultSink

_bearer = HTTPBearer(auto_error=False)


def get_session(request: Request) -> Iterator[Session]:
    with request.app.state.session_factory() as session:
        yield session


def get_dispatch_settings(request: Request) -> DispatchSettings:
    return request.app.state.dispatch_settings


def get_result_sink(request: Request) -> ResultSink:
    return request.app.state.result_sink


def require_admin(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> str:
    """Resolve the bearer token to a user id.

    Raises:
        HTTPException: 401 when the token is missing or unknown.
    """
    if credentials is not None:
        tokens: dict[str, str] = request.app.state.server_settings.admin_tokens
        for token, user_id in tokens.items():
            if secrets.compare_digest(token, credentials.credentials):
                return user_id
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing bearer token",
        headers={"WWW-Authenticate": "Bearer"},
    )


SessionDep = Annotated[Session, Depends(get_session)]
DispatchSettingsDep = Annotated[DispatchSettings, Depends(get_dispatch_settings)]
ResultSinkDep = Annotated[ResultSink, Depends(get_result_sink)]
AdminDep = Annotated[str, Depends(require_admin)]
