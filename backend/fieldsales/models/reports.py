from __future__ import annotations

from ..extensions import db
from fieldsales.time_utils import to_utc_z


VISIT_STATUS_VISITED = "visited"
VISIT_STATUS_NOT_VISITED = "not_visited"
VISIT_STATUSES = (VISIT_STATUS_VISITED, VISIT_STATUS_NOT_VISITED)

SAMPLE_KIND_CUSTOMER = "customer"
SAMPLE_KIND_PERSONAL = "personal"
SAMPLE_KINDS = (SAMPLE_KIND_CUSTOMER, SAMPLE_KIND_PERSONAL)


class DailyReport(db.Model):
    """
    One rep's activity report for one calendar day.

    date is a YYYY-MM-DD string in the company's timezone and is unique per
    rep. The total_* columns are derived from visits and recomputed on
    every save (see report_service.calculate_visit_stats).

    Samples are separate rows linked by report_id; deleting a report must go
    through report_service.delete_report so their stock is returned.
    """
    __tablename__ = "daily_reports"
    __table_args__ = (
        db.UniqueConstraint("company_id", "rep_id", "date", name="uq_daily_reports_company_rep_date"),
        db.Index("ix_daily_reports_company_date", "company_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    rep_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    date = db.Column(db.String(10), nullable=False)
    day = db.Column(db.String(10), nullable=False)
    notes = db.Column(db.Text, nullable=False, default="")

    # Up to MAX_REPORT_ATTACHMENTS storage references
    attachments = db.Column(db.JSON, nullable=False, default=list)

    total_visits = db.Column(db.Integer, nullable=False, default=0)
    total_visited = db.Column(db.Integer, nullable=False, default=0)
    total_not_visited = db.Column(db.Integer, nullable=False, default=0)
    total_extra = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    rep = db.relationship("User")
    visits = db.relationship(
        "ReportVisit",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="ReportVisit.position",
        lazy="select",
    )

    @property
    def stats(self) -> dict:
        return {
            "total_visits": self.total_visits,
            "total_visited": self.total_visited,
            "total_not_visited": self.total_not_visited,
            "total_extra": self.total_extra,
        }

    def __repr__(self) -> str:
        return f"<DailyReport id={self.id} rep_id={self.rep_id} date={self.date}>"

    def to_dict(self, include_visits: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "rep_id": self.rep_id,
            "date": self.date,
            "day": self.day,
            "notes": self.notes,
            "attachments": list(self.attachments or []),
            "stats": self.stats,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_visits:
            data["visits"] = [v.to_dict() for v in self.visits]
        return data


class ReportVisit(db.Model):
    """A customer visit line embedded in a daily report (ordered by position)."""
    __tablename__ = "report_visits"
    __table_args__ = (
        db.Index("ix_report_visits_customer", "customer_id"),
        db.Index("ix_report_visits_report", "report_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey("daily_reports.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=VISIT_STATUS_NOT_VISITED)
    reason = db.Column(db.String(255), nullable=False, default="")
    notes = db.Column(db.Text, nullable=False, default="")
    duration_minutes = db.Column(db.Integer, nullable=True)
    is_extra = db.Column(db.Boolean, nullable=False, default=False)

    report = db.relationship("DailyReport", back_populates="visits")
    customer = db.relationship("Customer")

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "status": self.status,
            "reason": self.reason,
            "notes": self.notes,
            "duration_minutes": self.duration_minutes,
            "is_extra": self.is_extra,
        }


class Sample(db.Model):
    """
    Product units a rep handed to a customer (kind="customer") or used
    personally (kind="personal"), recorded on exactly one daily report.

    customer_id is set iff kind="customer". When the customer is removed
    permanently the sample is detached and becomes a personal sample; it
    stays because the units really left the rep's stock.
    """
    __tablename__ = "samples"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_samples_quantity_positive"),
        db.CheckConstraint(
            "(kind = 'customer' AND customer_id IS NOT NULL) OR (kind = 'personal' AND customer_id IS NULL)",
            name="ck_samples_customer_matches_kind",
        ),
        db.Index("ix_samples_report", "report_id"),
        db.Index("ix_samples_company_rep_product_created", "company_id", "taken_by", "product_id", "created_at"),
        db.Index("ix_samples_customer", "customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    taken_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    report_id = db.Column(db.Integer, db.ForeignKey("daily_reports.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    notes = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    customer = db.relationship("Customer")

    def __repr__(self) -> str:
        return f"<Sample id={self.id} product_id={self.product_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "taken_by": self.taken_by,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "unit_type": self.product.unit_type if self.product else None,
            "report_id": self.report_id,
            "quantity": self.quantity,
            "kind": self.kind,
            "customer_id": self.customer_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
