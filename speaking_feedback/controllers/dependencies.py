"""Common FastAPI dependencies reused across controllers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, AsyncContextManager, AsyncIterator, Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from speaking_feedback.application.interfaces import FeedbackRepositoryInterface
from speaking_feedback.database import get_session, session_scope
from speaking_feedback.infrastructure.persistence.repositories_sqlalchemy import (
    SqlAlchemyFeedbackRepository,
)
from speaking_feedback.services.llm_client import ProviderClient

SessionDep = Annotated[AsyncSession, Depends(get_session)]
RepositoryFactory = Callable[[], AsyncContextManager[FeedbackRepositoryInterface]]


async def get_repository(session: SessionDep) -> FeedbackRepositoryInterface:
    """Repository bound to the request-scoped session."""

    return SqlAlchemyFeedbackRepository(session)


@asynccontextmanager
async def repository_scope() -> AsyncIterator[FeedbackRepositoryInterface]:
    """Repository with its own session, for work that outlives the request handler."""

    async with session_scope() as session:
        yield SqlAlchemyFeedbackRepository(session)


def get_repository_factory() -> RepositoryFactory:
    return repository_scope


def get_provider_client(request: Request) -> ProviderClient:
    """Shared provider client stored on the application state."""

    client = getattr(request.app.state, "provider_client", None)
    if client is None:
        client = ProviderClient()
        request.app.state.provider_client = client
    return client


def get_current_user_id(
    x_user_id: Annotated[Optional[int], Header(alias="X-User-Id")] = None,
) -> Optional[int]:
    return x_user_id


RepositoryDep = Annotated[FeedbackRepositoryInterface, Depends(get_repository)]
RepositoryFactoryDep = Annotated[RepositoryFactory, Depends(get_repository_factory)]
ProviderClientDep = Annotated[ProviderClient, Depends(get_provider_client)]
CurrentUserIdDep = Annotated[Optional[int], Depends(get_current_user_id)]


__all__ = [
    "CurrentUserIdDep",
    "ProviderClientDep",
    "RepositoryDep",
    "RepositoryFactoryDep",
    "SessionDep",
    "get_current_user_id",
    "get_provider_client",
    "get_repository",
    "get_repository_factory",
    "repository_scope",
]
