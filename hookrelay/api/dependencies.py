"""
FastAPI dependencies resolving the dispatch context from application state.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hookrelay.db.connection import session_scope
from hookrelay.dispatch.registry import DispatchContext


def get_dispatch_context(request: Request) -> DispatchContext:
    """
    Get the dispatch context built at startup.

    Raises:
        RuntimeError: If the application was started without one.
    """
    context = getattr(request.app.state, "dispatch", None)
    if context is None:
        raise RuntimeError("Dispatch context not initialized")
    return context


async def get_session(
    context: Annotated[DispatchContext, Depends(get_dispatch_context)],
) -> AsyncGenerator[AsyncSession]:
    """
    Dependency for getting broker store sessions.

    Yields:
        AsyncSession: An async database session.
    """
    async with session_scope(context.session_factory) as session:
        yield session


Dispatch = Annotated[DispatchContext, Depends(get_dispatch_context)]
Session = Annotated[AsyncSession, Depends(get_session)]
