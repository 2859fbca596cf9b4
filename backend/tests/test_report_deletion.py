# Overview: Pytest coverage for daily report deletion and stock restoration.

import pytest
from fieldsales.models import DailyReport, ReportVisit, Sample, StockLedgerEntry, Notification
from fieldsales.services import report_service, stock_service
from fieldsales.services.report_service import ReportNotFoundError

from conftest import MONDAY, visit, sample


def _report_with_samples(rep, customer, samples):
    return report_service.submit_report(
        company_id=rep.company_id,
        actor=rep,
        visits=[visit(customer)],
        samples=samples,
        new_attachments=["photo-1.jpg"],
        report_date=MONDAY,
    )


class TestDeleteReport:

    def test_restores_every_product_and_removes_samples(
        self, db_session, admin_a, rep_a, product_a, product_a2, customer_a, give_stock
    ):
        give_stock(admin_a, rep_a, product_a, 10)
        give_stock(admin_a, rep_a, product_a2, 5)
        created = _report_with_samples(rep_a, customer_a, [
            sample(product_a, 3, customer_a),
            sample(product_a, 2),
            sample(product_a2, 4, customer_a),
        ])
        report_id = created["report"]["id"]

        summary = report_service.delete_report(company_id=admin_a.company_id, actor=admin_a, report_id=report_id)

        assert summary["samples_restored"] == 3
        assert stock_service.get_balance(rep_a.company_id, rep_a.id, product_a.id) == 10
        assert stock_service.get_balance(rep_a.company_id, rep_a.id, product_a2.id) == 5
        assert Sample.query.filter_by(report_id=report_id).count() == 0
        assert DailyReport.query.count() == 0
        assert ReportVisit.query.count() == 0
        assert stock_service.verify_balances(rep_a.company_id) == []

        returns = StockLedgerEntry.query.filter(StockLedgerEntry.quantity_change > 0).filter(
            StockLedgerEntry.reason.like("Sample returned%")
        ).all()
        assert sorted(e.quantity_change for e in returns) == [2, 3, 4]
        assert all(e.rep_id == rep_a.id for e in returns)

    def test_notifies_owner_rep(self, db_session, admin_a, rep_a, product_a, customer_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 10)
        created = _report_with_samples(rep_a, customer_a, [sample(product_a, 1)])

        report_service.delete_report(company_id=admin_a.company_id, actor=admin_a, report_id=created["report"]["id"])

        note = Notification.query.filter_by(action_type="delete_report").one()
        assert note.target_user_ids == [rep_a.id]
        assert note.level == "warning"
        assert note.data["samples_restored"] == 1

    def test_attachments_removed_best_effort(
        self, app, db_session, admin_a, rep_a, customer_a, monkeypatch
    ):
        def _broken(ref):
            raise OSError("storage unavailable")

        monkeypatch.setitem(app.config, "ATTACHMENT_DELETE_HANDLER", _broken)
        created = _report_with_samples(rep_a, customer_a, [])

        summary = report_service.delete_report(
            company_id=admin_a.company_id, actor=admin_a, report_id=created["report"]["id"]
        )

        assert summary["attachments"] == ["photo-1.jpg"]
        assert summary["attachments_deleted"] == 0
        assert DailyReport.query.count() == 0

    def test_attachments_deleted_with_handler(self, app, db_session, admin_a, rep_a, customer_a, monkeypatch):
        deleted = []
        monkeypatch.setitem(app.config, "ATTACHMENT_DELETE_HANDLER", deleted.append)
        created = _report_with_samples(rep_a, customer_a, [])

        summary = report_service.delete_report(
            company_id=admin_a.company_id, actor=admin_a, report_id=created["report"]["id"]
        )

        assert deleted == ["photo-1.jpg"]
        assert summary["attachments_deleted"] == 1

    def test_missing_report(self, db_session, admin_a):
        with pytest.raises(ReportNotFoundError):
            report_service.delete_report(company_id=admin_a.company_id, actor=admin_a, report_id=424242)

    def test_other_company_report_is_not_found(self, db_session, admin_b, rep_a, customer_a):
        created = _report_with_samples(rep_a, customer_a, [])

        with pytest.raises(ReportNotFoundError):
            report_service.delete_report(
                company_id=admin_b.company_id, actor=admin_b, report_id=created["report"]["id"]
            )
        assert DailyReport.query.count() == 1
