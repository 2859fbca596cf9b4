# Overview: Pytest coverage for payload validation and visit plans.

import pytest
from fieldsales.services import visit_plan_service
from fieldsales.services.report_service import calculate_visit_stats, plan_sample_changes
from fieldsales.models import Sample
from fieldsales.validation import (
    ValidationError,
    coerce_int,
    clean_visits,
    clean_samples,
    clean_visit_plan_days,
    clean_report_date,
)


class TestCoerceInt:

    @pytest.mark.parametrize("value,expected", [(5, 5), ("7", 7), (" 12 ", 12), ("-3", -3)])
    def test_accepts_integers(self, value, expected):
        assert coerce_int(value, "qty") == expected

    @pytest.mark.parametrize("value", [None, True, 1.0, "1.5", "1e3", "", "ten", [1]])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValidationError):
            coerce_int(value, "qty")

    def test_minimum(self):
        with pytest.raises(ValidationError):
            coerce_int(0, "qty", minimum=1)


class TestCleanReportDate:

    def test_accepts_padded_date(self):
        assert clean_report_date("2026-01-05") == "2026-01-05"

    @pytest.mark.parametrize("value", ["2026-1-5", "2026-01-5", "05/01/2026", "2026-13-01", "", None, 20260105])
    def test_rejects_unpadded_or_invalid(self, value):
        with pytest.raises(ValidationError):
            clean_report_date(value)


class TestCleanVisits:

    def test_normalizes_entries(self):
        cleaned = clean_visits([
            {"customer_id": "3", "status": "visited", "duration_minutes": 15, "notes": "  ok "},
            {"customer_id": 4, "status": "not_visited", "reason": "Closed", "duration_minutes": 30},
        ])
        assert cleaned == [
            {"customer_id": 3, "status": "visited", "reason": "", "notes": "ok", "duration_minutes": 15},
            {"customer_id": 4, "status": "not_visited", "reason": "Closed", "notes": "", "duration_minutes": None},
        ]

    @pytest.mark.parametrize("visits", [
        [],
        None,
        [{"customer_id": 1, "status": "maybe"}],
        [{"customer_id": 1, "status": "not_visited"}],
        [{"customer_id": 1, "status": "visited", "duration_minutes": -5}],
        [{"customer_id": 1, "status": "visited"}, {"customer_id": 1, "status": "visited"}],
        ["not-an-object"],
    ])
    def test_rejects(self, visits):
        with pytest.raises(ValidationError):
            clean_visits(visits)


class TestCleanSamples:

    def test_personal_sample_drops_customer(self):
        cleaned = clean_samples([{"product_id": 2, "quantity": 3, "kind": "personal", "customer_id": 9}])
        assert cleaned[0]["customer_id"] is None
        assert cleaned[0]["id"] is None

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError):
            clean_samples([
                {"id": 5, "product_id": 2, "quantity": 1, "kind": "personal"},
                {"id": 5, "product_id": 2, "quantity": 2, "kind": "personal"},
            ])

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            clean_samples([{"product_id": 2, "quantity": 1, "kind": "gift"}])
        assert exc_info.value.details["invalid_samples"][0]["index"] == 0


class TestPlanSampleChanges:

    def _existing(self, sample_id, product_id, quantity):
        return Sample(id=sample_id, product_id=product_id, quantity=quantity, kind="personal")

    def test_returns_are_ordered_before_withdrawals(self):
        existing = {1: self._existing(1, 10, 4)}
        desired = [{"id": None, "product_id": 10, "quantity": 4, "kind": "personal", "customer_id": None, "notes": ""}]

        plan = plan_sample_changes(existing, desired, [1])

        assert [d.delta for d in plan.deltas] == [4, -4]
        assert [d.delta for d in plan.ordered_deltas()] == [4, -4]
        assert plan.net_withdrawals() == {10: 0}

    def test_withdrawal_first_in_input_still_applied_after_return(self):
        existing = {1: self._existing(1, 10, 2), 2: self._existing(2, 11, 3)}
        desired = [
            {"id": 1, "product_id": 10, "quantity": 5, "kind": "personal", "customer_id": None, "notes": ""},
            {"id": 2, "product_id": 11, "quantity": 1, "kind": "personal", "customer_id": None, "notes": ""},
        ]

        plan = plan_sample_changes(existing, desired, [])

        assert [(d.product_id, d.delta) for d in plan.ordered_deltas()] == [(11, 2), (10, -3)]
        assert plan.net_withdrawals() == {10: 3, 11: -2}


class TestVisitStats:

    def test_counts(self):
        stats = calculate_visit_stats([
            {"status": "visited", "is_extra": False},
            {"status": "visited", "is_extra": True},
            {"status": "not_visited", "is_extra": True},
        ])
        assert stats == {"total_visits": 3, "total_visited": 2, "total_not_visited": 1, "total_extra": 2}

    def test_empty(self):
        assert calculate_visit_stats([])["total_visits"] == 0


class TestVisitPlans:

    def test_day_validation(self):
        with pytest.raises(ValidationError):
            clean_visit_plan_days([{"day": "Funday", "customer_ids": []}])
        with pytest.raises(ValidationError):
            clean_visit_plan_days([{"day": "Monday"}, {"day": "Monday"}])

    def test_save_and_lookup(self, db_session, rep_a, customer_a, customer_a2):
        visit_plan_service.save_visit_plan(rep_a.company_id, rep_a.id, [
            {"day": "Monday", "customer_ids": [customer_a.id, customer_a2.id]},
        ])

        assert visit_plan_service.planned_customer_ids(rep_a.company_id, rep_a.id, "Monday") == {
            customer_a.id, customer_a2.id,
        }
        assert visit_plan_service.planned_customer_ids(rep_a.company_id, rep_a.id, "Friday") == set()

    def test_save_rejects_foreign_customers(self, db_session, rep_a, customer_b):
        with pytest.raises(ValidationError) as exc_info:
            visit_plan_service.save_visit_plan(rep_a.company_id, rep_a.id, [
                {"day": "Monday", "customer_ids": [customer_b.id]},
            ])
        assert exc_info.value.details["customer_ids"] == [customer_b.id]

    def test_save_rejects_unknown_rep(self, db_session, admin_a, customer_a):
        with pytest.raises(ValidationError):
            visit_plan_service.save_visit_plan(admin_a.company_id, admin_a.id, [])
