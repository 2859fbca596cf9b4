# Overview: Service-layer operations for rep stock; balances, the stock ledger and stock views.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, StockBalance, StockLedgerEntry, Sample, User, ROLE_SALES, SAMPLE_KIND_CUSTOMER
from fieldsales.time_utils import utcnow
from .catalog_service import find_product
from .concurrency import run_with_retry
"""
Rep Stock Invariants (authoritative)

Ledger and balance:
- StockLedgerEntry is the source of truth and is append-only (no updates/deletes).
- StockBalance.quantity == SUM(quantity_change) over the ledger for the same
  (company_id, rep_id, product_id). include_in_analysis never changes that sum;
  it only selects entries for month-to-date reporting.
- adjust() is the only mutation path for balances. It appends the ledger entry
  and applies the delta in the same DB transaction.

Concurrency:
- The balance change is one conditional UPDATE:
      quantity = quantity + delta WHERE key AND quantity + delta >= 0
  so two writers that both passed a sufficiency check against a stale read
  cannot jointly overdraw. Zero rows updated -> StockConflictError, and the
  caller re-runs its whole unit of work against fresh balances.
- After STOCK_CONFLICT_RETRY_ATTEMPTS the conflict surfaces as StockChangedError
  (retryable by the client), distinct from InsufficientStockError.
"""


class StockError(Exception):
    """Raised for rep stock operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(StockError):
    """A planned withdrawal exceeds the rep's current balance. Nothing was written."""
    def __init__(self, shortages: list[dict]):
        super().__init__("Insufficient stock for samples", details={"insufficient_stock": shortages})
        self.shortages = shortages


class StockConflictError(StockError):
    """The conditional balance update lost a race; re-run against fresh balances."""


class StockChangedError(StockError):
    """Conflict retries exhausted. The client should resubmit."""


def _ensure_balance_row(company_id: int, rep_id: int, product_id: int) -> StockBalance:
    row = StockBalance.query.filter_by(
        company_id=company_id,
        rep_id=rep_id,
        product_id=product_id,
    ).first()
    if row is not None:
        return row

    row = StockBalance(company_id=company_id, rep_id=rep_id, product_id=product_id, quantity=0)
    db.session.add(row)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another writer created the same key first
        raise StockConflictError(
            "Stock balance was created concurrently",
            details={"rep_id": rep_id, "product_id": product_id},
        ) from exc
    return row


def adjust(
    *,
    company_id: int,
    rep_id: int,
    product_id: int,
    delta: int,
    reason: str,
    actor_user_id: int | None,
    include_in_analysis: bool = False,
) -> StockLedgerEntry:
    """
    Apply a signed quantity change to a rep's balance and record it in the ledger.

    Flushes but does not commit; the caller owns the transaction.

    Raises:
        ValueError: delta is zero
        StockConflictError: the balance would go negative at write time
    """
    if delta == 0:
        raise ValueError("delta must be non-zero")

    row = _ensure_balance_row(company_id, rep_id, product_id)

    updated = (
        db.session.query(StockBalance)
        .filter(
            StockBalance.id == row.id,
            StockBalance.quantity + delta >= 0,
        )
        .update(
            {StockBalance.quantity: StockBalance.quantity + delta},
            synchronize_session=False,
        )
    )
    if updated != 1:
        raise StockConflictError(
            "Stock changed while saving",
            details={"rep_id": rep_id, "product_id": product_id, "delta": delta},
        )
    db.session.expire(row)

    entry = StockLedgerEntry(
        company_id=company_id,
        rep_id=rep_id,
        product_id=product_id,
        quantity_change=delta,
        reason=reason,
        added_by_user_id=actor_user_id,
        include_in_analysis=include_in_analysis,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def run_stock_operation(func, *, retry_on: tuple = ()):
    """
    Run a unit of work that calls adjust(), re-running it on balance conflicts.

    func must be self-contained (read, check, write, commit) because every
    retry starts from a rolled-back session. retry_on adds caller-specific
    conflict types that are re-run the same way.
    """
    attempts = current_app.config.get("STOCK_CONFLICT_RETRY_ATTEMPTS", 3)
    try:
        return run_with_retry(func, attempts=attempts, retry_on=(StockConflictError,) + tuple(retry_on))
    except StockConflictError as exc:
        current_app.logger.warning("Stock conflict retries exhausted: %s", exc.details)
        raise StockChangedError("Stock changed while saving, please retry", details=exc.details) from exc


def get_balance(company_id: int, rep_id: int, product_id: int) -> int:
    quantity = db.session.query(StockBalance.quantity).filter_by(
        company_id=company_id,
        rep_id=rep_id,
        product_id=product_id,
    ).scalar()
    return int(quantity or 0)


def get_balances(company_id: int, rep_id: int, product_ids) -> dict[int, int]:
    """Keyed lookup of current balances; missing rows read as 0."""
    product_ids = list(set(product_ids))
    if not product_ids:
        return {}
    rows = db.session.query(StockBalance.product_id, StockBalance.quantity).filter(
        StockBalance.company_id == company_id,
        StockBalance.rep_id == rep_id,
        StockBalance.product_id.in_(product_ids),
    ).all()
    balances = {pid: 0 for pid in product_ids}
    for product_id, quantity in rows:
        balances[product_id] = int(quantity)
    return balances


def replay_balance(company_id: int, rep_id: int, product_id: int, as_of: datetime | None = None) -> int:
    """
    Rebuild a balance from the ledger (audit path, not used on writes).

    As-of filtering is inclusive: created_at <= as_of.
    """
    q = db.session.query(
        func.coalesce(func.sum(StockLedgerEntry.quantity_change), 0)
    ).filter(
        StockLedgerEntry.company_id == company_id,
        StockLedgerEntry.rep_id == rep_id,
        StockLedgerEntry.product_id == product_id,
    )
    if as_of is not None:
        q = q.filter(StockLedgerEntry.created_at <= as_of)
    return int(q.scalar() or 0)


def check_sufficiency(company_id: int, rep_id: int, withdrawals: dict[int, int]) -> None:
    """
    Verify the rep holds enough of every product with a positive net withdrawal.

    withdrawals maps product_id -> net units to take out (<= 0 entries are ignored).
    Raises InsufficientStockError listing every shortage.
    """
    needed = {pid: qty for pid, qty in withdrawals.items() if qty > 0}
    if not needed:
        return

    balances = get_balances(company_id, rep_id, needed.keys())
    short = [pid for pid, qty in needed.items() if balances.get(pid, 0) < qty]
    if not short:
        return

    names = dict(
        db.session.query(Product.id, Product.name).filter(Product.id.in_(short)).all()
    )
    shortages = [
        {
            "product_id": pid,
            "product_name": names.get(pid, "Unknown product"),
            "available": balances.get(pid, 0),
            "required": needed[pid],
        }
        for pid in sorted(short)
    ]
    raise InsufficientStockError(shortages)


def _month_start(now: datetime | None = None) -> datetime:
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def list_rep_stock(company_id: int, rep_id: int) -> list[dict]:
    """The rep's own stock: product name, unit type and quantity per product."""
    rows = (
        db.session.query(StockBalance, Product)
        .join(Product, Product.id == StockBalance.product_id)
        .filter(
            StockBalance.company_id == company_id,
            StockBalance.rep_id == rep_id,
        )
        .order_by(Product.name.asc())
        .all()
    )
    return [
        {
            "product_id": product.id,
            "product_name": product.name,
            "unit_type": product.unit_type,
            "quantity": balance.quantity,
        }
        for balance, product in rows
    ]


def product_stock_by_reps(company_id: int, product_id: int, *, since: datetime | None = None) -> list[dict]:
    """
    Per-rep holdings of one product with month-to-date movement.

    total_taken: sum of ledger entries flagged include_in_analysis since `since`.
    total_samples_distributed: customer-directed sample units since `since`.
    """
    product = find_product(company_id, product_id)
    if product is None:
        raise StockError("Product not found")

    since = since or _month_start()

    balances = (
        db.session.query(StockBalance, User)
        .join(User, User.id == StockBalance.rep_id)
        .filter(
            StockBalance.company_id == company_id,
            StockBalance.product_id == product_id,
        )
        .order_by(User.id.asc())
        .all()
    )
    rep_ids = [user.id for _, user in balances]
    if not rep_ids:
        return []

    taken = dict(
        db.session.query(StockLedgerEntry.rep_id, func.sum(StockLedgerEntry.quantity_change))
        .filter(
            StockLedgerEntry.company_id == company_id,
            StockLedgerEntry.product_id == product_id,
            StockLedgerEntry.rep_id.in_(rep_ids),
            StockLedgerEntry.include_in_analysis.is_(True),
            StockLedgerEntry.created_at >= since,
        )
        .group_by(StockLedgerEntry.rep_id)
        .all()
    )
    distributed = dict(
        db.session.query(Sample.taken_by, func.sum(Sample.quantity))
        .filter(
            Sample.company_id == company_id,
            Sample.product_id == product_id,
            Sample.taken_by.in_(rep_ids),
            Sample.kind == SAMPLE_KIND_CUSTOMER,
            Sample.created_at >= since,
        )
        .group_by(Sample.taken_by)
        .all()
    )

    return [
        {
            "rep_id": user.id,
            "rep_name": user.display_name,
            "product_id": product.id,
            "product_name": product.name,
            "unit_type": product.unit_type,
            "quantity": balance.quantity,
            "total_taken": int(taken.get(user.id) or 0),
            "total_samples_distributed": int(distributed.get(user.id) or 0),
        }
        for balance, user in balances
    ]


def set_rep_stock(
    *,
    company_id: int,
    actor: User,
    rep_id: int,
    product_id: int,
    quantity: int,
    include_in_analysis: bool = True,
) -> dict:
    """
    Admin assignment: bring a rep's balance to `quantity`.

    The difference is written through adjust() so the ledger stays complete.
    A zero difference writes nothing.
    """
    if quantity < 0:
        raise StockError("quantity must be a non-negative integer")

    def _op():
        product = find_product(company_id, product_id)
        if product is None:
            raise StockError("Product not found")
        rep = User.query.filter_by(id=rep_id, company_id=company_id, role=ROLE_SALES).first()
        if rep is None:
            raise StockError("Rep not found")

        current = get_balance(company_id, rep_id, product_id)
        change = quantity - current
        if change == 0:
            return {"quantity": current, "quantity_change": 0, "entry": None}

        verb = "added" if change > 0 else "removed"
        entry = adjust(
            company_id=company_id,
            rep_id=rep_id,
            product_id=product_id,
            delta=change,
            reason=f"{abs(change)} unit(s) {verb} by {actor.display_name}",
            actor_user_id=actor.id,
            include_in_analysis=include_in_analysis,
        )
        db.session.commit()
        return {"quantity": quantity, "quantity_change": change, "entry": entry.to_dict()}

    return run_stock_operation(_op)


def list_stock_history(
    company_id: int,
    *,
    rep_id: int | None = None,
    product_id: int | None = None,
    limit: int = 200,
) -> list[StockLedgerEntry]:
    q = StockLedgerEntry.query.filter_by(company_id=company_id)
    if rep_id is not None:
        q = q.filter_by(rep_id=rep_id)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    return q.order_by(
        StockLedgerEntry.created_at.desc(),
        StockLedgerEntry.id.desc(),
    ).limit(limit).all()


def verify_balances(company_id: int | None = None) -> list[dict]:
    """
    Compare every balance row with its ledger replay.

    Returns the mismatches (empty list when the cache is consistent).
    """
    ledger = (
        db.session.query(
            StockLedgerEntry.company_id,
            StockLedgerEntry.rep_id,
            StockLedgerEntry.product_id,
            func.sum(StockLedgerEntry.quantity_change),
        )
        .group_by(StockLedgerEntry.company_id, StockLedgerEntry.rep_id, StockLedgerEntry.product_id)
    )
    balances = StockBalance.query
    if company_id is not None:
        ledger = ledger.filter(StockLedgerEntry.company_id == company_id)
        balances = balances.filter_by(company_id=company_id)

    replayed = {(c, r, p): int(total or 0) for c, r, p, total in ledger.all()}
    cached = {(b.company_id, b.rep_id, b.product_id): b.quantity for b in balances.all()}

    drift = []
    for key in sorted(set(replayed) | set(cached)):
        expected = replayed.get(key, 0)
        actual = cached.get(key, 0)
        if expected != actual:
            drift.append({
                "company_id": key[0],
                "rep_id": key[1],
                "product_id": key[2],
                "balance": actual,
                "ledger_sum": expected,
            })
    return drift
