from __future__ import annotations

from ..extensions import db
from fieldsales.time_utils import to_utc_z


class Notification(db.Model):
    """
    Outbox row for an in-app notification.

    Delivery (push, email, websocket) is handled elsewhere and reads these
    rows; the backend only records who did what and who should be told.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_company_created", "company_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)  # actor
    target_user_ids = db.Column(db.JSON, nullable=False, default=list)

    level = db.Column(db.String(16), nullable=False, default="info")
    action_type = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.String(500), nullable=False)

    entity_type = db.Column(db.String(64), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    data = db.Column(db.JSON, nullable=True)

    seen = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "user_id": self.user_id,
            "target_user_ids": list(self.target_user_ids or []),
            "level": self.level,
            "action_type": self.action_type,
            "description": self.description,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "data": self.data,
            "seen": self.seen,
            "created_at": to_utc_z(self.created_at),
        }
