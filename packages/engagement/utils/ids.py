"""Identifier generation."""

import uuid


def new_id(prefix: str) -> str:
    """Return a new unique id such as ``apt-3f9c1a2b7d4e``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def short_ref(entity_id: str) -> str:
    """Short human-facing reference used in notification text."""
    return entity_id[-6:]
