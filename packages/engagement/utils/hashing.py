"""Hashing utilities for event de-duplication."""

import hashlib


def compute_text_hash(text: str, algorithm: str = "sha256") -> str:
    """Compute hash of text content.

    Args:
        text: Text content to hash
        algorithm: Hash algorithm to use (sha256, md5, etc.)

    Returns:
        Hexadecimal hash string
    """
    hash_func = hashlib.new(algorithm)
    hash_func.update(text.encode("utf-8"))
    return hash_func.hexdigest()


def compute_event_id(
    event_type: str, entity_id: str, occurred_at: int, seq: int = 0, detail: str = ""
) -> str:
    """Derive a stable event id.

    The same transition re-emitted after a retry hashes to the same id,
    which is what lets a sink de-duplicate at-least-once delivery.

    Args:
        event_type: Dotted event type (e.g. "appointment.confirmed")
        entity_id: Id of the entity the event is about
        occurred_at: Effective time of the transition, epoch ms
        seq: Disambiguator for repeated events on one entity at one instant
        detail: Serialized event payload; separates distinct events such as
            two messages posted to one case in the same millisecond

    Returns:
        Event id of the form ``evt-<24 hex chars>``
    """
    key = f"{event_type}|{entity_id}|{occurred_at}|{seq}"
    if detail:
        key = f"{key}|{detail}"
    digest = compute_text_hash(key)
    return f"evt-{digest[:24]}"
