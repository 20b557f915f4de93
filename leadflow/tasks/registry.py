"""Handler registry mapping job types to executable callables."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

Handler = Callable[[Any, Any], Any]


class HandlerRegistry:
    """Mutable registry of job handlers keyed by job type."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, job_type: str, handler: Handler) -> None:
        self._handlers[job_type] = handler

    def get(self, job_type: str) -> Handler:
        if job_type not in self._handlers:
            raise KeyError(f"Unknown job type: {job_type}")
        return self._handlers[job_type]

    def keys(self) -> list[str]:
        return sorted(self._handlers.keys())

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers


def build_default_registry() -> HandlerRegistry:
    from leadflow.tasks import handlers

    registry = HandlerRegistry()
    for job_type, handler in handlers.HANDLERS.items():
        registry.register(job_type, handler)
    return registry
