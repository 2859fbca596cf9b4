# Overview: Best-effort removal of stored report attachments.

from __future__ import annotations

from flask import current_app


def delete_by_reference(ref: str) -> bool:
    """
    Delete one stored attachment via the configured ATTACHMENT_DELETE_HANDLER.

    Returns True on success. Failures are logged, never raised: attachment
    cleanup must not block report or customer operations.
    """
    handler = current_app.config.get("ATTACHMENT_DELETE_HANDLER")
    if handler is None:
        current_app.logger.info("No attachment handler configured; leaving %s in storage", ref)
        return False
    try:
        handler(ref)
        return True
    except Exception:
        current_app.logger.warning("Failed to delete attachment %s", ref, exc_info=True)
        return False


def delete_many(refs) -> int:
    """Delete each reference; returns how many were removed."""
    return sum(1 for ref in refs if delete_by_reference(ref))
