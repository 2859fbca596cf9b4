from __future__ import annotations

from ..extensions import db
from fieldsales.time_utils import to_utc_z, utcnow


class StockBalance(db.Model):
    """
    Current quantity of one product carried by one rep.

    This is a cache of the stock ledger: quantity always equals the sum of
    StockLedgerEntry.quantity_change for the same (company, rep, product).
    Rows are created lazily at 0 and never deleted.

    Never write quantity directly; use stock_service.adjust(), which appends
    the ledger entry and applies the delta as one conditional UPDATE.
    """
    __tablename__ = "stock_balances"
    __table_args__ = (
        db.UniqueConstraint("company_id", "rep_id", "product_id", name="uq_stock_balances_key"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_balances_quantity_nonnegative"),
        db.Index("ix_stock_balances_company_product", "company_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    rep_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    rep = db.relationship("User")

    def __repr__(self) -> str:
        return (
            f"<StockBalance rep_id={self.rep_id} product_id={self.product_id} "
            f"quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "rep_id": self.rep_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockLedgerEntry(db.Model):
    """
    Append-only history of every stock quantity change.

    - quantity_change is signed: negative when a rep consumes stock
      (samples handed out), positive when stock is assigned or returned.
    - include_in_analysis marks admin assignments that count as "taken"
      in month-to-date reporting. It never affects the balance.
    - Rows are never updated or deleted.
    """
    __tablename__ = "stock_ledger"
    __table_args__ = (
        db.Index("ix_stock_ledger_key_created", "company_id", "rep_id", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    rep_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False, default="")
    added_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    include_in_analysis = db.Column(db.Boolean, nullable=False, default=False)

    # Python-side default keeps sub-second ordering for as-of replays
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "rep_id": self.rep_id,
            "product_id": self.product_id,
            "quantity_change": self.quantity_change,
            "reason": self.reason,
            "added_by_user_id": self.added_by_user_id,
            "include_in_analysis": self.include_in_analysis,
            "created_at": to_utc_z(self.created_at),
        }
