"""
Database module.
Contains the broker store: connection, models, and repository.
"""

from hookrelay.db.connection import (
    close_db,
    create_engine_for,
    create_session_factory,
    get_engine,
    init_db,
    session_scope,
)
from hookrelay.db.models import Base, WebhookJob, WebhookQueue

__all__ = [
    "session_scope",
    "get_engine",
    "create_engine_for",
    "create_session_factory",
    "init_db",
    "close_db",
    "WebhookJob",
    "WebhookQueue",
    "Base",
]
