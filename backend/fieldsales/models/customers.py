from __future__ import annotations

from ..extensions import db
from fieldsales.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer directory entry (pharmacy, shop, clinic...) visited by reps.

    Permanent deletion is not a plain DELETE: visit plans and daily reports
    reference customers, so removal goes through customer_service.delete_customer.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("company_id", "customer_code", name="uq_customers_company_code"),
        db.Index("ix_customers_company_active", "company_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    full_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    customer_code = db.Column(db.String(20), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    company = db.relationship("Company", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "full_name": self.full_name,
            "phone": self.phone,
            "city": self.city,
            "address": self.address,
            "customer_code": self.customer_code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class VisitPlan(db.Model):
    """
    Weekly visit schedule for one rep.

    days is a JSON list: [{"day": "Monday", "customer_ids": [1, 2]}, ...]
    with each weekday appearing at most once. A visit in a daily report whose
    customer is not planned for that weekday is flagged is_extra.
    """
    __tablename__ = "visit_plans"
    __table_args__ = (
        db.UniqueConstraint("company_id", "rep_id", name="uq_visit_plans_company_rep"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    rep_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    days = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def customers_for_day(self, day: str) -> set[int]:
        for entry in self.days or []:
            if entry.get("day") == day:
                return {int(cid) for cid in entry.get("customer_ids") or []}
        return set()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "rep_id": self.rep_id,
            "days": self.days or [],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


CLEANUP_STATUS_RUNNING = "RUNNING"
CLEANUP_STATUS_DONE = "DONE"


class CustomerCleanupJob(db.Model):
    """
    Persisted cursor for the customer removal cascade.

    Each processed batch of daily reports commits together with
    last_processed_id, so an interrupted cascade resumes where it stopped.
    customer_id is a plain integer: the job outlives the customer row.
    """
    __tablename__ = "customer_cleanup_jobs"
    __table_args__ = (
        db.Index("ix_cleanup_jobs_company_customer", "company_id", "customer_id"),
        db.Index("ix_cleanup_jobs_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    customer_id = db.Column(db.Integer, nullable=False)
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=CLEANUP_STATUS_RUNNING)
    last_processed_id = db.Column(db.Integer, nullable=True)
    reports_processed = db.Column(db.Integer, nullable=False, default=0)
    reports_deleted = db.Column(db.Integer, nullable=False, default=0)
    plans_updated = db.Column(db.Integer, nullable=False, default=0)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "last_processed_id": self.last_processed_id,
            "reports_processed": self.reports_processed,
            "reports_deleted": self.reports_deleted,
            "plans_updated": self.plans_updated,
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
        }
