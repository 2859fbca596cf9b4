from __future__ import annotations

from ..extensions import db
from fieldsales.time_utils import to_utc_z


ROLE_ADMIN = "admin"
ROLE_SALES = "sales"
VALID_ROLES = {ROLE_ADMIN, ROLE_SALES}


class Company(db.Model):
    """
    Multi-tenant root: every tenant is a Company.

    All users, products, customers, reports and stock rows carry company_id,
    and every query issued on behalf of a request is scoped by it.

    timezone decides which calendar day a daily report belongs to.
    """
    __tablename__ = "companies"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    timezone = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "timezone": self.timezone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class User(db.Model):
    """
    Company member. role is either "admin" or "sales" (a rep).

    Credentials and sessions live with the upstream auth service; this table
    only holds what the backend needs to attribute and scope actions.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("company_id", "username", name="uq_users_company_username"),
        db.Index("ix_users_company_role", "company_id", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    username = db.Column(db.String(64), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_SALES)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("users", lazy=True))

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_rep(self) -> bool:
        return self.role == ROLE_SALES

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
