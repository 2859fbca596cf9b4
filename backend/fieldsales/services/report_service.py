"""
Daily report service: sample reconciliation against rep stock.

WHY: A rep's carried stock must always match the samples they report.
Every report create/update/delete turns the difference between the persisted
sample set and the desired one into signed stock adjustments, written to the
ledger before the samples and report that depend on them.

SEQUENCE (submit_report):
1. Resolve the target report (rep: own report for the day; admin: by id).
2. Plan: deleted samples return stock, new samples withdraw, edited samples
   withdraw or return the difference. Zero deltas produce nothing.
3. Check sufficiency on the net withdrawal per product. Nothing is written
   when any product is short.
4. Commit pass: returns before withdrawals, each through stock_service.adjust,
   then sample rows, then the report with recomputed visit stats.
5. After commit: delete dropped attachments, emit a notification. Neither
   can fail the operation.

Stock is always charged to the report's owner, even when an admin edits it.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Company, DailyReport, ReportVisit, Sample, User
from ..validation import (
    ValidationError,
    clean_visits,
    clean_samples,
    clean_id_list,
    clean_attachment_refs,
    clean_report_date,
)
from fieldsales.time_utils import local_report_day, weekday_for_date
from . import attachment_service, notification_service
from .catalog_service import find_products, invalid_customer_ids
from .stock_service import StockConflictError, adjust, check_sufficiency, run_stock_operation
from .visit_plan_service import planned_customer_ids


REASON_SAMPLE_ADDED = "New sample added to report"
REASON_SAMPLE_INCREASED = "Sample quantity increased in report"
REASON_SAMPLE_DECREASED = "Sample quantity decreased in report"
REASON_SAMPLE_DELETED = "Sample deleted from report"
REASON_SAMPLE_PRODUCT_CHANGED = "Sample product changed in report"


class ReportError(Exception):
    """Raised for daily report operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ReportNotFoundError(ReportError):
    pass


class ReportAccessError(ReportError):
    pass


class ReportConflictError(ReportError):
    """The (rep, date) report was created by a concurrent request."""


class ReconciliationFatalError(ReportError):
    """
    Storage failed after stock adjustments started.

    Logged at CRITICAL with the planned deltas for manual reconciliation and
    never retried automatically.
    """


@dataclass(frozen=True)
class StockDelta:
    product_id: int
    delta: int
    reason: str
    sample_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity_change": self.delta,
            "reason": self.reason,
            "sample_id": self.sample_id,
        }


@dataclass
class ReconciliationPlan:
    """Stock deltas and sample writes needed to move a report to its desired sample set."""
    deltas: list[StockDelta] = field(default_factory=list)
    deleted: list[Sample] = field(default_factory=list)
    upserts: list[tuple[Sample | None, dict]] = field(default_factory=list)

    def net_withdrawals(self) -> dict[int, int]:
        """product_id -> units leaving stock (negative means a net return)."""
        totals: dict[int, int] = {}
        for d in self.deltas:
            totals[d.product_id] = totals.get(d.product_id, 0) - d.delta
        return totals

    def ordered_deltas(self) -> list[StockDelta]:
        # Returns first so a withdrawal can use stock freed in the same submission
        return sorted(self.deltas, key=lambda d: d.delta < 0)


def calculate_visit_stats(visits) -> dict:
    """Aggregate counters for a visits list (dicts or ReportVisit rows)."""
    def _get(v, key):
        return v.get(key) if isinstance(v, dict) else getattr(v, key)

    total_visited = 0
    total_not_visited = 0
    total_extra = 0
    for v in visits:
        status = _get(v, "status")
        if status == "visited":
            total_visited += 1
        elif status == "not_visited":
            total_not_visited += 1
        if _get(v, "is_extra"):
            total_extra += 1

    return {
        "total_visits": len(visits),
        "total_visited": total_visited,
        "total_not_visited": total_not_visited,
        "total_extra": total_extra,
    }


def apply_visit_stats(report: DailyReport) -> None:
    stats = calculate_visit_stats(report.visits)
    report.total_visits = stats["total_visits"]
    report.total_visited = stats["total_visited"]
    report.total_not_visited = stats["total_not_visited"]
    report.total_extra = stats["total_extra"]


def plan_sample_changes(
    existing: dict[int, Sample],
    desired: list[dict],
    deleted_ids: list[int],
) -> ReconciliationPlan:
    """
    Diff the persisted samples of a report against the desired list.

    existing: sample id -> Sample currently on the report
    desired: cleaned sample dicts; entries with an id edit that sample
    deleted_ids: samples to remove; ids not on the report are ignored

    Samples on the report that appear in neither list are left untouched.
    """
    desired_ids = {s["id"] for s in desired if s.get("id") is not None}

    overlap = desired_ids & set(deleted_ids)
    if overlap:
        raise ValidationError(
            "A sample cannot be edited and deleted in the same submission",
            details={"sample_ids": sorted(overlap)},
        )

    unknown = desired_ids - set(existing)
    if unknown:
        raise ValidationError(
            "Some samples do not belong to this report",
            details={"sample_ids": sorted(unknown)},
        )

    plan = ReconciliationPlan()

    for sample_id in deleted_ids:
        sample = existing.get(sample_id)
        if sample is None:
            continue
        plan.deleted.append(sample)
        plan.deltas.append(StockDelta(sample.product_id, sample.quantity, REASON_SAMPLE_DELETED, sample.id))

    for wanted in desired:
        old = existing.get(wanted["id"]) if wanted.get("id") is not None else None
        plan.upserts.append((old, wanted))

        if old is None:
            plan.deltas.append(StockDelta(wanted["product_id"], -wanted["quantity"], REASON_SAMPLE_ADDED))
        elif old.product_id != wanted["product_id"]:
            plan.deltas.append(StockDelta(old.product_id, old.quantity, REASON_SAMPLE_PRODUCT_CHANGED, old.id))
            plan.deltas.append(StockDelta(wanted["product_id"], -wanted["quantity"], REASON_SAMPLE_PRODUCT_CHANGED, old.id))
        else:
            withdrawal = wanted["quantity"] - old.quantity
            if withdrawal > 0:
                plan.deltas.append(StockDelta(old.product_id, -withdrawal, REASON_SAMPLE_INCREASED, old.id))
            elif withdrawal < 0:
                plan.deltas.append(StockDelta(old.product_id, -withdrawal, REASON_SAMPLE_DECREASED, old.id))

    return plan


@contextmanager
def _commit_pass(context: dict):
    """
    Guard the write phase of a reconciliation.

    Stock conflicts propagate so the whole unit of work can be re-run.
    Any other storage failure is fatal: rolled back, logged with enough
    context for manual reconciliation, and not retried.
    """
    try:
        yield
    except (StockConflictError, ReportConflictError):
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.critical(
            "Reconciliation commit failed, manual stock check required: %s", context, exc_info=True
        )
        raise ReconciliationFatalError("Failed to save report changes", details=context) from exc


def _company_day(company_id: int) -> tuple[str, str]:
    company = db.session.get(Company, company_id)
    default_tz = current_app.config.get("DEFAULT_TIMEZONE", "UTC")
    return local_report_day(company.timezone if company else None, default_tz=default_tz)


def _resolve_target(
    company_id: int,
    actor: User,
    report_id: int | None,
    report_date: str | None,
    requested_date: str | None = None,
) -> tuple[DailyReport | None, int, str, str]:
    """
    Find the report a submission applies to.

    A rep only ever writes the report for today in the company timezone;
    requested_date, when a client sends one, must name that same day.

    Returns (report or None, owner rep id, date, weekday label).
    """
    if actor.is_rep:
        if report_date:
            date_str, day = report_date, weekday_for_date(report_date)
        else:
            date_str, day = _company_day(company_id)
        if requested_date is not None and requested_date != date_str:
            raise ReportAccessError(
                "You can only submit your own report for today",
                details={"date": requested_date, "today": date_str},
            )

        report = DailyReport.query.filter_by(
            company_id=company_id,
            rep_id=actor.id,
            date=date_str,
        ).first()
        if report_id is not None and (report is None or report.id != report_id):
            raise ReportAccessError("You can only edit your own report for today")
        return report, actor.id, date_str, day

    if actor.is_admin:
        if report_id is None:
            raise ValidationError("report_id is required for admin updates")
        report = DailyReport.query.filter_by(id=report_id, company_id=company_id).first()
        if report is None:
            raise ReportNotFoundError("Report not found")
        return report, report.rep_id, report.date, report.day

    raise ReportAccessError("Not allowed to submit reports")


def _validate_references(company_id: int, visits: list[dict], samples: list[dict]) -> None:
    customer_ids = [v["customer_id"] for v in visits]
    customer_ids += [s["customer_id"] for s in samples if s.get("customer_id") is not None]
    invalid = invalid_customer_ids(company_id, customer_ids)
    if invalid:
        raise ValidationError(
            "Some customers do not exist or belong to another company",
            details={"customer_ids": invalid},
        )

    products = find_products(company_id, [s["product_id"] for s in samples])
    missing = sorted({s["product_id"] for s in samples} - set(products))
    if missing:
        raise ValidationError(
            "Some products do not exist or belong to another company",
            details={"product_ids": missing},
        )


def _apply_visits(report: DailyReport, visits: list[dict], planned: set[int]) -> None:
    report.visits = [
        ReportVisit(
            customer_id=v["customer_id"],
            position=position,
            status=v["status"],
            reason=v["reason"],
            notes=v["notes"],
            duration_minutes=v["duration_minutes"],
            is_extra=v["customer_id"] not in planned,
        )
        for position, v in enumerate(visits)
    ]
    apply_visit_stats(report)


def _write_samples(report: DailyReport, rep_id: int, plan: ReconciliationPlan) -> list[Sample]:
    for sample in plan.deleted:
        db.session.delete(sample)

    written = []
    for old, wanted in plan.upserts:
        sample = old
        if sample is None:
            sample = Sample(company_id=report.company_id, report_id=report.id)
            db.session.add(sample)
        sample.taken_by = rep_id
        sample.product_id = wanted["product_id"]
        sample.quantity = wanted["quantity"]
        sample.kind = wanted["kind"]
        sample.customer_id = wanted["customer_id"]
        sample.notes = wanted["notes"]
        written.append(sample)
    return written


def submit_report(
    *,
    company_id: int,
    actor: User,
    visits,
    samples=None,
    deleted_sample_ids=None,
    notes: str | None = None,
    report_id: int | None = None,
    kept_attachments=None,
    new_attachments=None,
    report_date: str | None = None,
    requested_date: str | None = None,
) -> dict:
    """
    Create or update a daily report and reconcile its samples with rep stock.

    Reps write their own report for the current day. report_date overrides
    "today" for trusted internal callers (imports, tests); requested_date is
    the client-supplied day and is refused unless it is the rep's today.
    Admins must pass report_id and may edit any report in the company.

    kept_attachments=None keeps every existing attachment; a list keeps only
    those references and deletes the rest after commit.

    Raises:
        ValidationError: bad payload or references (nothing written)
        InsufficientStockError: a product is short (nothing written)
        StockChangedError: balance conflicts exhausted retries
        ReportNotFoundError / ReportAccessError
        ReconciliationFatalError: storage failed during the commit pass
    """
    cleaned_visits = clean_visits(visits)
    cleaned_samples = clean_samples(samples)
    deleted_ids = clean_id_list(deleted_sample_ids, "deleted_sample_ids")
    added_refs = clean_attachment_refs(new_attachments, "new_attachments")
    kept_refs = None if kept_attachments is None else clean_attachment_refs(kept_attachments, "kept_attachments")
    max_attachments = current_app.config.get("MAX_REPORT_ATTACHMENTS", 3)
    if report_date is not None:
        report_date = clean_report_date(report_date, "report_date")
    if requested_date is not None:
        requested_date = clean_report_date(requested_date)

    _validate_references(company_id, cleaned_visits, cleaned_samples)

    def _op():
        report, rep_id, date_str, day = _resolve_target(company_id, actor, report_id, report_date, requested_date)
        created = report is None

        existing = {}
        if report is not None:
            existing = {
                s.id: s
                for s in Sample.query.filter_by(report_id=report.id, company_id=company_id).all()
            }

        plan = plan_sample_changes(existing, cleaned_samples, deleted_ids)
        check_sufficiency(company_id, rep_id, plan.net_withdrawals())

        current_refs = list(report.attachments or []) if report is not None else []
        if kept_refs is None:
            kept = current_refs
        else:
            kept = [ref for ref in current_refs if ref in kept_refs]
        removed = [ref for ref in current_refs if ref not in kept]
        final_refs = kept + [ref for ref in added_refs if ref not in kept]
        if len(final_refs) > max_attachments:
            raise ValidationError(f"A report can have at most {max_attachments} attachments")

        if report is None:
            report = DailyReport(
                company_id=company_id,
                rep_id=rep_id,
                date=date_str,
                day=day,
                notes="",
                attachments=[],
            )
            db.session.add(report)
            try:
                db.session.flush()
            except IntegrityError as exc:
                raise ReportConflictError("Report for this day was created concurrently") from exc

        context = {
            "company_id": company_id,
            "rep_id": rep_id,
            "report_id": report.id,
            "deltas": [d.to_dict() for d in plan.deltas],
        }
        with _commit_pass(context):
            for d in plan.ordered_deltas():
                adjust(
                    company_id=company_id,
                    rep_id=rep_id,
                    product_id=d.product_id,
                    delta=d.delta,
                    reason=d.reason,
                    actor_user_id=actor.id,
                )

            written = _write_samples(report, rep_id, plan)

            if notes is not None:
                report.notes = notes.strip()
            report.attachments = final_refs
            _apply_visits(report, cleaned_visits, planned_customer_ids(company_id, rep_id, day))

            db.session.commit()

        return report, created, removed, written, plan

    try:
        report, created, removed, written, plan = run_stock_operation(_op, retry_on=(ReportConflictError,))
    except Exception:
        db.session.rollback()
        raise

    if removed:
        attachment_service.delete_many(removed)

    _notify_submission(report, actor, created)

    samples_now = Sample.query.filter_by(report_id=report.id).order_by(Sample.id.asc()).all()
    return {
        "created": created,
        "report": report.to_dict(),
        "samples": [s.to_dict() for s in samples_now],
        "stock_changes": [d.to_dict() for d in plan.ordered_deltas()],
    }


def _notify_submission(report: DailyReport, actor: User, created: bool) -> None:
    if actor.is_admin:
        notification_service.emit(
            company_id=report.company_id,
            actor_user_id=actor.id,
            target_user_ids=[report.rep_id],
            action_type="admin_update_daily_report",
            description=f"{actor.display_name} updated your daily report for {report.date}",
            entity_type="DailyReport",
            entity_id=report.id,
            data={"date": report.date, "visits_count": report.total_visits},
        )
        return

    notification_service.emit(
        company_id=report.company_id,
        actor_user_id=actor.id,
        target_user_ids=notification_service.company_admin_ids(report.company_id, exclude_user_id=actor.id),
        action_type="send_daily_report" if created else "update_daily_report",
        description=(
            f"{actor.display_name} submitted the daily report for {report.date}"
            if created
            else f"{actor.display_name} updated the daily report for {report.date}"
        ),
        entity_type="DailyReport",
        entity_id=report.id,
        data={
            "date": report.date,
            "visits_count": report.total_visits,
            "visited_count": report.total_visited,
        },
    )


def unwind_report(report: DailyReport, *, actor_user_id: int | None, reason: str) -> dict:
    """
    Return every sample of a report to its owner's stock, then delete the
    samples and the report.

    Flushes, does not commit. Attachments are not touched; the returned
    summary lists them for best-effort removal after commit.
    """
    samples = Sample.query.filter_by(report_id=report.id).order_by(Sample.id.asc()).all()

    for sample in samples:
        adjust(
            company_id=report.company_id,
            rep_id=report.rep_id,
            product_id=sample.product_id,
            delta=sample.quantity,
            reason=reason,
            actor_user_id=actor_user_id,
        )

    for sample in samples:
        db.session.delete(sample)
    db.session.flush()

    summary = {
        "report_id": report.id,
        "rep_id": report.rep_id,
        "date": report.date,
        "samples_restored": len(samples),
        "restored": [{"product_id": s.product_id, "quantity": s.quantity} for s in samples],
        "attachments": list(report.attachments or []),
    }
    db.session.delete(report)
    db.session.flush()
    return summary


def delete_report(*, company_id: int, actor: User, report_id: int) -> dict:
    """
    Delete a report, returning all its samples' quantities to the owner rep.

    Order: stock returns, sample deletion, report deletion (one commit),
    then attachments (best-effort) and a notification to the owner rep.
    """
    def _op():
        report = DailyReport.query.filter_by(id=report_id, company_id=company_id).first()
        if report is None:
            raise ReportNotFoundError("Report not found")

        context = {"company_id": company_id, "rep_id": report.rep_id, "report_id": report.id}
        with _commit_pass(context):
            summary = unwind_report(
                report,
                actor_user_id=actor.id,
                reason=f"Sample returned: report deleted by {actor.display_name}",
            )
            db.session.commit()
        return summary

    try:
        summary = run_stock_operation(_op)
    except Exception:
        db.session.rollback()
        raise

    summary["attachments_deleted"] = attachment_service.delete_many(summary["attachments"])

    notification_service.emit(
        company_id=company_id,
        actor_user_id=actor.id,
        target_user_ids=[summary["rep_id"]],
        action_type="delete_report",
        level="warning",
        description=(
            f"Your report for {summary['date']} was deleted by {actor.display_name} "
            f"({summary['samples_restored']} sample(s) returned to stock)"
        ),
        entity_type="DailyReport",
        entity_id=summary["report_id"],
        data={
            "date": summary["date"],
            "deleted_by": actor.display_name,
            "samples_restored": summary["samples_restored"],
            "attachments_deleted": summary["attachments_deleted"],
        },
    )
    return summary


def get_report_detail(*, company_id: int, actor: User, report_id: int) -> dict:
    """Report with visits, samples and stats. Reps may only read their own."""
    report = DailyReport.query.filter_by(id=report_id, company_id=company_id).first()
    if report is None:
        raise ReportNotFoundError("Report not found")
    if not actor.is_admin and report.rep_id != actor.id:
        raise ReportAccessError("You cannot access other reps' reports")

    samples = Sample.query.filter_by(report_id=report.id).order_by(Sample.id.asc()).all()
    data = report.to_dict()
    data["rep_name"] = report.rep.display_name if report.rep else None
    data["samples"] = [s.to_dict() for s in samples]
    return data
