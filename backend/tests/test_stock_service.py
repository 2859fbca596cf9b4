# Overview: Pytest coverage for rep stock balances, the stock ledger and stock views.

"""
Rep Stock Tests

Covers:
- adjust(): ledger entry per change, conditional update never goes negative
- Ledger replay equals the cached balance
- set_rep_stock(): writes only the difference, zero difference is a no-op
- Sufficiency check boundary (q passes, q+1 fails)
- Stock views and balance audit
- Tenant scoping
"""

from datetime import timedelta

import pytest
from fieldsales.extensions import db
from fieldsales.models import StockBalance, StockLedgerEntry
from fieldsales.services import stock_service
from fieldsales.services.stock_service import (
    StockError,
    StockConflictError,
    InsufficientStockError,
)
from fieldsales.services import report_service
from fieldsales.time_utils import utcnow

from conftest import MONDAY, visit, sample


class TestAdjust:

    def test_adjust_creates_balance_and_ledger_entry(self, db_session, admin_a, rep_a, product_a):
        entry = stock_service.adjust(
            company_id=rep_a.company_id,
            rep_id=rep_a.id,
            product_id=product_a.id,
            delta=7,
            reason="Initial load",
            actor_user_id=admin_a.id,
        )
        db_session.commit()

        assert entry.quantity_change == 7
        assert stock_service.get_balance(rep_a.company_id, rep_a.id, product_a.id) == 7
        assert StockLedgerEntry.query.filter_by(rep_id=rep_a.id).count() == 1

    def test_adjust_rejects_zero_delta(self, db_session, admin_a, rep_a, product_a):
        with pytest.raises(ValueError):
            stock_service.adjust(
                company_id=rep_a.company_id,
                rep_id=rep_a.id,
                product_id=product_a.id,
                delta=0,
                reason="noop",
                actor_user_id=admin_a.id,
            )

    def test_adjust_never_drives_balance_negative(self, db_session, admin_a, rep_a, product_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 2)

        with pytest.raises(StockConflictError):
            stock_service.adjust(
                company_id=rep_a.company_id,
                rep_id=rep_a.id,
                product_id=product_a.id,
                delta=-3,
                reason="Overdraw",
                actor_user_id=admin_a.id,
            )
        db_session.rollback()

        assert stock_service.get_balance(rep_a.company_id, rep_a.id, product_a.id) == 2
        assert StockLedgerEntry.query.filter_by(rep_id=rep_a.id).count() == 1

    def test_adjust_to_exactly_zero_is_allowed(self, db_session, admin_a, rep_a, product_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 4)

        stock_service.adjust(
            company_id=rep_a.company_id,
            rep_id=rep_a.id,
            product_id=product_a.id,
            delta=-4,
            reason="All out",
            actor_user_id=admin_a.id,
        )
        db_session.commit()

        assert stock_service.get_balance(rep_a.company_id, rep_a.id, product_a.id) == 0


class TestLedgerReplay:

    def test_replay_matches_balance_after_mixed_operations(
        self, db_session, admin_a, rep_a, product_a, customer_a, give_stock
    ):
        give_stock(admin_a, rep_a, product_a, 10)
        result = report_service.submit_report(
            company_id=rep_a.company_id,
            actor=rep_a,
            visits=[visit(customer_a)],
            samples=[sample(product_a, 6, customer_a)],
            report_date=MONDAY,
        )
        sample_id = result["samples"][0]["id"]
        report_service.submit_report(
            company_id=rep_a.company_id,
            actor=rep_a,
            visits=[visit(customer_a)],
            samples=[sample(product_a, 2, customer_a, sample_id=sample_id)],
            report_date=MONDAY,
        )
        give_stock(admin_a, rep_a, product_a, 3)

        balance = stock_service.get_balance(rep_a.company_id, rep_a.id, product_a.id)
        assert balance == 3
        assert stock_service.replay_balance(rep_a.company_id, rep_a.id, product_a.id) == balance
        assert stock_service.verify_balances(rep_a.company_id) == []

    def test_replay_as_of_is_inclusive(self, db_session, admin_a, rep_a, product_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 5)
        first = StockLedgerEntry.query.filter_by(rep_id=rep_a.id).one()
        give_stock(admin_a, rep_a, product_a, 8)

        later = StockLedgerEntry.query.filter_by(rep_id=rep_a.id).order_by(StockLedgerEntry.id.desc()).first()
        later.created_at = first.created_at + timedelta(minutes=5)
        db_session.commit()

        assert stock_service.replay_balance(rep_a.company_id, rep_a.id, product_a.id, as_of=first.created_at) == 5
        assert stock_service.replay_balance(rep_a.company_id, rep_a.id, product_a.id) == 8

    def test_verify_balances_reports_drift(self, db_session, admin_a, rep_a, product_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 5)

        # Simulate a write that bypassed the ledger
        db_session.query(StockBalance).filter_by(rep_id=rep_a.id).update({StockBalance.quantity: 9})
        db_session.commit()

        drift = stock_service.verify_balances(rep_a.company_id)
        assert len(drift) == 1
        assert drift[0]["balance"] == 9
        assert drift[0]["ledger_sum"] == 5


class TestSetRepStock:

    def test_set_writes_only_the_difference(self, db_session, admin_a, rep_a, product_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 10)
        result = give_stock(admin_a, rep_a, product_a, 4)

        assert result["quantity"] == 4
        assert result["quantity_change"] == -6
        assert result["entry"]["reason"] == "6 unit(s) removed by Admin A"

        changes = [e.quantity_change for e in StockLedgerEntry.query.order_by(StockLedgerEntry.id).all()]
        assert changes == [10, -6]

    def test_set_same_quantity_is_noop(self, db_session, admin_a, rep_a, product_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 10)
        result = give_stock(admin_a, rep_a, product_a, 10)

        assert result["quantity_change"] == 0
        assert result["entry"] is None
        assert StockLedgerEntry.query.count() == 1

    def test_set_rejects_product_from_other_company(self, db_session, admin_a, rep_a, product_b):
        with pytest.raises(StockError):
            stock_service.set_rep_stock(
                company_id=admin_a.company_id,
                actor=admin_a,
                rep_id=rep_a.id,
                product_id=product_b.id,
                quantity=5,
            )
        assert StockLedgerEntry.query.count() == 0

    def test_set_rejects_rep_from_other_company(self, db_session, admin_a, rep_b, product_a):
        with pytest.raises(StockError):
            stock_service.set_rep_stock(
                company_id=admin_a.company_id,
                actor=admin_a,
                rep_id=rep_b.id,
                product_id=product_a.id,
                quantity=5,
            )

    def test_set_rejects_negative_quantity(self, db_session, admin_a, rep_a, product_a):
        with pytest.raises(StockError):
            stock_service.set_rep_stock(
                company_id=admin_a.company_id,
                actor=admin_a,
                rep_id=rep_a.id,
                product_id=product_a.id,
                quantity=-1,
            )


class TestSufficiency:

    def test_exact_balance_passes(self, db_session, admin_a, rep_a, product_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 5)
        stock_service.check_sufficiency(rep_a.company_id, rep_a.id, {product_a.id: 5})

    def test_one_more_than_balance_fails_with_details(self, db_session, admin_a, rep_a, product_a, give_stock):
        give_stock(admin_a, rep_a, product_a, 5)

        with pytest.raises(InsufficientStockError) as exc_info:
            stock_service.check_sufficiency(rep_a.company_id, rep_a.id, {product_a.id: 6})

        shortage = exc_info.value.details["insufficient_stock"][0]
        assert shortage == {
            "product_id": product_a.id,
            "product_name": "Amoxicillin 500mg",
            "available": 5,
            "required": 6,
        }

    def test_missing_balance_counts_as_zero(self, db_session, rep_a, product_a):
        with pytest.raises(InsufficientStockError):
            stock_service.check_sufficiency(rep_a.company_id, rep_a.id, {product_a.id: 1})

    def test_net_returns_are_not_checked(self, db_session, rep_a, product_a):
        stock_service.check_sufficiency(rep_a.company_id, rep_a.id, {product_a.id: -3})


class TestStockViews:

    def test_list_rep_stock_only_shows_own_rows(
        self, db_session, admin_a, rep_a, rep_a2, product_a, product_a2, give_stock
    ):
        give_stock(admin_a, rep_a, product_a, 3)
        give_stock(admin_a, rep_a, product_a2, 1)
        give_stock(admin_a, rep_a2, product_a, 9)

        items = stock_service.list_rep_stock(rep_a.company_id, rep_a.id)

        assert [(i["product_name"], i["quantity"]) for i in items] == [
            ("Amoxicillin 500mg", 3),
            ("Ibuprofen 200mg", 1),
        ]

    def test_product_stock_by_reps_month_totals(
        self, db_session, admin_a, rep_a, rep_a2, product_a, customer_a, give_stock
    ):
        give_stock(admin_a, rep_a, product_a, 10)
        give_stock(admin_a, rep_a2, product_a, 4)
        report_service.submit_report(
            company_id=rep_a.company_id,
            actor=rep_a,
            visits=[visit(customer_a)],
            samples=[sample(product_a, 3, customer_a), sample(product_a, 1)],
            report_date=MONDAY,
        )

        rows = {r["rep_id"]: r for r in stock_service.product_stock_by_reps(rep_a.company_id, product_a.id)}

        assert rows[rep_a.id]["quantity"] == 6
        assert rows[rep_a.id]["total_taken"] == 10
        # Personal-use samples are not distribution
        assert rows[rep_a.id]["total_samples_distributed"] == 3
        assert rows[rep_a2.id]["quantity"] == 4
        assert rows[rep_a2.id]["total_samples_distributed"] == 0

    def test_product_stock_by_reps_ignores_entries_before_since(
        self, db_session, admin_a, rep_a, product_a, give_stock
    ):
        give_stock(admin_a, rep_a, product_a, 10)

        rows = stock_service.product_stock_by_reps(
            rep_a.company_id, product_a.id, since=utcnow() + timedelta(days=1)
        )
        assert rows[0]["quantity"] == 10
        assert rows[0]["total_taken"] == 0

    def test_product_stock_by_reps_other_company_product(self, db_session, company_a, product_b):
        with pytest.raises(StockError):
            stock_service.product_stock_by_reps(company_a.id, product_b.id)

    def test_history_newest_first_and_filtered(
        self, db_session, admin_a, rep_a, rep_a2, product_a, product_a2, give_stock
    ):
        give_stock(admin_a, rep_a, product_a, 3)
        give_stock(admin_a, rep_a, product_a2, 2)
        give_stock(admin_a, rep_a2, product_a, 1)

        entries = stock_service.list_stock_history(rep_a.company_id, rep_id=rep_a.id)
        assert [e.quantity_change for e in entries] == [2, 3]

        entries = stock_service.list_stock_history(rep_a.company_id, product_id=product_a.id)
        assert {e.rep_id for e in entries} == {rep_a.id, rep_a2.id}

    def test_history_is_tenant_scoped(self, db_session, admin_a, rep_a, product_a, company_b, give_stock):
        give_stock(admin_a, rep_a, product_a, 3)
        assert stock_service.list_stock_history(company_b.id) == []
        assert stock_service.verify_balances(company_b.id) == []
