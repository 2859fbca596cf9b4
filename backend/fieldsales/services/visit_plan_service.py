# Overview: Weekly visit plans; planned-customer lookup and customer scrubbing.

from __future__ import annotations

from ..extensions import db
from ..models import VisitPlan, User, ROLE_SALES
from ..validation import ValidationError, clean_visit_plan_days
from .catalog_service import invalid_customer_ids


def planned_customer_ids(company_id: int, rep_id: int, day: str) -> set[int]:
    """Customers the rep is expected to visit on the given weekday."""
    plan = VisitPlan.query.filter_by(company_id=company_id, rep_id=rep_id).first()
    if plan is None:
        return set()
    return plan.customers_for_day(day)


def save_visit_plan(company_id: int, rep_id: int, days) -> VisitPlan:
    """
    Create or replace a rep's weekly plan.

    Raises ValidationError for duplicate or unknown weekdays, an unknown rep,
    or customers outside the company.
    """
    cleaned = clean_visit_plan_days(days)

    rep = User.query.filter_by(id=rep_id, company_id=company_id, role=ROLE_SALES).first()
    if rep is None:
        raise ValidationError("Rep not found")

    all_ids = [cid for entry in cleaned for cid in entry["customer_ids"]]
    invalid = invalid_customer_ids(company_id, all_ids)
    if invalid:
        raise ValidationError(
            "Some customers do not exist or belong to another company",
            details={"customer_ids": invalid},
        )

    plan = VisitPlan.query.filter_by(company_id=company_id, rep_id=rep_id).first()
    if plan is None:
        plan = VisitPlan(company_id=company_id, rep_id=rep_id)
        db.session.add(plan)
    plan.days = cleaned
    db.session.commit()
    return plan


def remove_customer_from_visit_plans(company_id: int, customer_id: int) -> int:
    """
    Drop a customer from every day entry of every plan in the company.

    Only plans that actually changed are written. Flushes, does not commit.
    Returns the number of plans updated.
    """
    changed = 0
    for plan in VisitPlan.query.filter_by(company_id=company_id).order_by(VisitPlan.id.asc()).all():
        needs_update = False
        new_days = []
        for entry in plan.days or []:
            ids = [int(cid) for cid in entry.get("customer_ids") or []]
            kept = [cid for cid in ids if cid != customer_id]
            if len(kept) != len(ids):
                needs_update = True
            new_days.append({**entry, "customer_ids": kept})

        if needs_update:
            # JSON columns are not mutation-tracked; assign a new list
            plan.days = new_days
            changed += 1

    if changed:
        db.session.flush()
    return changed
