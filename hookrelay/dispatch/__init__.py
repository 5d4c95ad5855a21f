"""
Dispatch module.
Contains dedup identity derivation, the queue registry and the submission
handler.
"""

from hookrelay.dispatch.dedup import content_hash, derive_deduplication_id
from hookrelay.dispatch.queue import JobQueue
from hookrelay.dispatch.registry import DispatchContext, QueueRegistry
from hookrelay.dispatch.submission import submit

__all__ = [
    "derive_deduplication_id",
    "content_hash",
    "JobQueue",
    "QueueRegistry",
    "DispatchContext",
    "submit",
]
