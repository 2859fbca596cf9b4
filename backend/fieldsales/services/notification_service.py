# Overview: Fire-and-forget notification events written to the notifications outbox.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Notification, User, ROLE_ADMIN


def company_admin_ids(company_id: int, exclude_user_id: int | None = None) -> list[int]:
    q = db.session.query(User.id).filter(
        User.company_id == company_id,
        User.role == ROLE_ADMIN,
        User.is_active.is_(True),
    )
    ids = [uid for (uid,) in q.order_by(User.id.asc()).all()]
    if exclude_user_id is not None:
        ids = [uid for uid in ids if uid != exclude_user_id]
    return ids


def emit(
    *,
    company_id: int,
    actor_user_id: int | None,
    target_user_ids: list[int],
    action_type: str,
    description: str,
    level: str = "info",
    entity_type: str | None = None,
    entity_id: int | None = None,
    data: dict | None = None,
) -> Notification | None:
    """
    Record a notification in its own transaction.

    Call this only after the primary operation has committed. Any failure is
    logged and swallowed: a notification must never undo or fail the
    operation it describes.
    """
    try:
        notification = Notification(
            company_id=company_id,
            user_id=actor_user_id,
            target_user_ids=list(target_user_ids),
            level=level,
            action_type=action_type,
            description=description,
            entity_type=entity_type,
            entity_id=entity_id,
            data=data,
        )
        db.session.add(notification)
        db.session.commit()
        return notification
    except Exception:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to emit %s notification for company %s", action_type, company_id, exc_info=True
        )
        return None
