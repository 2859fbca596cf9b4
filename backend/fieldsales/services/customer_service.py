# backend/fieldsales/services/customer_service.py
"""
Permanent customer removal with cascading cleanup.

WHY: Visit plans and daily reports reference customers. Removing a customer
must leave no dangling references, and a tenant can have an unbounded number
of historical reports, so the report pass runs in fixed-size batches.

SEQUENCE:
1. Scrub the customer from every visit plan day entry (only changed plans saved).
2. Reports referencing the customer, in batches ordered by id after the
   persisted cursor: drop the customer's visits and recompute stats; a report
   left with no visits is unwound like an explicit deletion (its samples'
   stock goes back to the rep). Each batch commits with the cursor.
3. If a report naming the customer was saved behind the cursor meanwhile,
   rewind the cursor and repeat step 2. Otherwise detach remaining samples
   that name the customer (they become personal samples), delete the
   customer and mark the job done in one commit.

Re-running is idempotent: cleaned reports no longer match the batch query.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import (
    Customer,
    CustomerCleanupJob,
    DailyReport,
    ReportVisit,
    Sample,
    User,
    CLEANUP_STATUS_RUNNING,
    CLEANUP_STATUS_DONE,
    SAMPLE_KIND_PERSONAL,
)
from fieldsales.time_utils import utcnow
from . import attachment_service, notification_service
from .report_service import apply_visit_stats, unwind_report
from .concurrency import lock_for_update
from .stock_service import run_stock_operation
from .visit_plan_service import remove_customer_from_visit_plans


class CustomerError(Exception):
    """Raised for customer operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CustomerNotFoundError(CustomerError):
    pass


class CustomerCleanupError(CustomerError):
    """A cleanup batch failed; the job cursor marks where to resume."""


def _start_or_resume_job(company_id: int, customer_id: int, actor_user_id: int | None) -> CustomerCleanupJob:
    job = CustomerCleanupJob.query.filter_by(
        company_id=company_id,
        customer_id=customer_id,
        status=CLEANUP_STATUS_RUNNING,
    ).order_by(CustomerCleanupJob.id.desc()).first()
    if job is not None:
        current_app.logger.info(
            "Resuming cleanup job %s for customer %s after report id %s",
            job.id, customer_id, job.last_processed_id,
        )
        return job

    job = CustomerCleanupJob(
        company_id=company_id,
        customer_id=customer_id,
        requested_by_user_id=actor_user_id,
        status=CLEANUP_STATUS_RUNNING,
        reports_processed=0,
        reports_deleted=0,
        plans_updated=0,
    )
    db.session.add(job)
    db.session.commit()
    return job


def _next_report_batch(company_id: int, customer_id: int, after_id: int | None, batch_size: int) -> list[DailyReport]:
    q = DailyReport.query.filter(
        DailyReport.company_id == company_id,
        DailyReport.visits.any(ReportVisit.customer_id == customer_id),
    )
    if after_id is not None:
        q = q.filter(DailyReport.id > after_id)
    return q.order_by(DailyReport.id.asc()).limit(batch_size).all()


def _process_batch(job: CustomerCleanupJob, actor_user_id: int | None, batch_size: int) -> tuple[int, list[str]]:
    """
    Clean one batch of reports and advance the cursor in the same commit.

    Returns (reports in batch, attachment refs of deleted reports).
    """
    customer_id = job.customer_id
    batch = _next_report_batch(job.company_id, customer_id, job.last_processed_id, batch_size)
    if not batch:
        return 0, []

    attachments: list[str] = []
    deleted = 0
    for report in batch:
        remaining = [v for v in report.visits if v.customer_id != customer_id]
        if not remaining:
            summary = unwind_report(
                report,
                actor_user_id=actor_user_id,
                reason="Sample returned: report emptied by customer removal",
            )
            attachments.extend(summary["attachments"])
            deleted += 1
            continue

        for position, visit in enumerate(remaining):
            visit.position = position
        report.visits = remaining
        apply_visit_stats(report)

    job.last_processed_id = batch[-1].id
    job.reports_processed += len(batch)
    job.reports_deleted += deleted
    db.session.commit()
    return len(batch), attachments


def run_customer_cleanup(job: CustomerCleanupJob, *, actor_user_id: int | None = None) -> CustomerCleanupJob:
    """
    Drive a cleanup job to completion from its persisted cursor.

    Safe to call again after a crash or on a finished customer: processed
    reports no longer match and the final deletes are no-ops.
    """
    batch_size = current_app.config.get("CUSTOMER_CLEANUP_BATCH_SIZE", 100)
    company_id = job.company_id
    customer_id = job.customer_id
    job_id = job.id

    def _plans_op():
        changed = remove_customer_from_visit_plans(company_id, customer_id)
        current = db.session.get(CustomerCleanupJob, job_id)
        current.plans_updated += changed
        db.session.commit()

    def _batch_op():
        # Serialize concurrent resumers of the same job on backends that honor FOR UPDATE
        current = lock_for_update(CustomerCleanupJob.query.filter_by(id=job_id)).one()
        return _process_batch(current, actor_user_id, batch_size)

    def _finish_op():
        if _next_report_batch(company_id, customer_id, None, 1):
            # A report naming the customer was saved behind the cursor; sweep again from the start
            current = db.session.get(CustomerCleanupJob, job_id)
            current.last_processed_id = None
            db.session.commit()
            current_app.logger.info("Cleanup job %s rewinding: reports still reference customer %s", job_id, customer_id)
            return None

        detached = (
            db.session.query(Sample)
            .filter(Sample.company_id == company_id, Sample.customer_id == customer_id)
            .update(
                {Sample.customer_id: None, Sample.kind: SAMPLE_KIND_PERSONAL},
                synchronize_session=False,
            )
        )
        Customer.query.filter_by(id=customer_id, company_id=company_id).delete(synchronize_session=False)
        current = db.session.get(CustomerCleanupJob, job_id)
        current.status = CLEANUP_STATUS_DONE
        current.finished_at = utcnow()
        db.session.commit()
        return detached

    try:
        run_stock_operation(_plans_op)

        detached = None
        while detached is None:
            while True:
                count, attachments = run_stock_operation(_batch_op)
                if attachments:
                    attachment_service.delete_many(attachments)
                if count < batch_size:
                    break

            detached = run_stock_operation(_finish_op)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current = db.session.get(CustomerCleanupJob, job_id)
        context = {
            "company_id": company_id,
            "customer_id": customer_id,
            "job_id": job_id,
            "last_processed_id": current.last_processed_id if current else None,
        }
        current_app.logger.error("Customer cleanup interrupted; resume from cursor: %s", context, exc_info=True)
        raise CustomerCleanupError("Customer cleanup interrupted", details=context) from exc

    if detached:
        current_app.logger.info("Detached %s sample(s) from removed customer %s", detached, customer_id)
    return db.session.get(CustomerCleanupJob, job_id)


def delete_customer(*, company_id: int, actor: User, customer_id: int) -> dict:
    """
    Permanently delete a customer and clean every reference to it.

    An interrupted earlier attempt for the same customer is resumed from
    its cursor rather than started over.
    """
    customer = Customer.query.filter_by(id=customer_id, company_id=company_id).first()
    if customer is None:
        raise CustomerNotFoundError("Customer not found")
    snapshot = customer.to_dict()

    job = _start_or_resume_job(company_id, customer_id, actor.id)
    job = run_customer_cleanup(job, actor_user_id=actor.id)

    notification_service.emit(
        company_id=company_id,
        actor_user_id=actor.id,
        target_user_ids=notification_service.company_admin_ids(company_id, exclude_user_id=actor.id),
        action_type="delete_customer",
        level="warning",
        description=f"{actor.display_name} deleted customer {snapshot['full_name']}",
        entity_type="Customer",
        entity_id=customer_id,
        data={"previous": snapshot, "reports_cleaned": job.reports_processed},
    )

    return {
        "customer_id": customer_id,
        "reports_cleaned": job.reports_processed,
        "reports_deleted": job.reports_deleted,
        "plans_updated": job.plans_updated,
        "job": job.to_dict(),
    }


def resume_customer_cleanups(company_id: int | None = None) -> list[CustomerCleanupJob]:
    """Finish every RUNNING cleanup job (e.g. after a worker crash)."""
    q = CustomerCleanupJob.query.filter_by(status=CLEANUP_STATUS_RUNNING)
    if company_id is not None:
        q = q.filter_by(company_id=company_id)
    finished = []
    for job in q.order_by(CustomerCleanupJob.id.asc()).all():
        finished.append(run_customer_cleanup(job, actor_user_id=job.requested_by_user_id))
    return finished
