"""Identifier generation helpers."""

from __future__ import annotations

import uuid


def new_trace_id() -> str:
    """Create a hex trace identifier for correlating job logs."""
    return uuid.uuid4().hex


def sandbox_message_id(channel: str) -> str:
    return f"sandbox-{channel}-{uuid.uuid4().hex[:12]}"
