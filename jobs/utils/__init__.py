"""Task utilities."""
from jobs.utils.database import create_task_engine

__all__ = [
    "create_task_engine",
]
