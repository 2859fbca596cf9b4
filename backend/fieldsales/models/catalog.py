from __future__ import annotations

from ..extensions import db
from fieldsales.time_utils import to_utc_z


UNIT_TYPES = ("carton", "box", "piece", "bundle")


class Product(db.Model):
    """
    Product master data, scoped to a company.

    Read-only from the stock engine's point of view: samples and stock rows
    reference products, they never modify them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_company_name", "company_id", "name"),
        db.Index("ix_products_company_active", "company_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit_type = db.Column(db.String(16), nullable=False, default="piece")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    company = db.relationship("Company", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} company_id={self.company_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "unit_type": self.unit_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
