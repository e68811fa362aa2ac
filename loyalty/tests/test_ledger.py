"""
Unit Tests for the Ledger Service

Tests cover:
1. Appeal submission and validation
2. Appeal approval (including concurrent double approval)
3. Appeal rejection
4. Retry, inconsistency and reconciliation of the balance step
5. Pending queue ordering
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import UUID

import pytest

from loyalty.errors import (
    AlreadyResolvedError,
    AppealNotFoundError,
    BusinessNotFoundError,
    InconsistentLedgerError,
    InvalidAmountError,
    InvalidPointsError,
)
from loyalty.models import AppealStatus
from loyalty.service import appeal_purchase_id


# Test constants
USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
OTHER_USER_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
MISSING_ID = UUID("00000000-0000-0000-0000-000000000000")


class TestSubmitAppeal:
    """Tests for appeal submission."""

    def test_submit_creates_pending_appeal(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        assert appeal.status == AppealStatus.PENDING
        assert appeal.amount == Decimal("4.5")
        assert appeal.points_expected == 20
        assert appeal.appeal_reason == "lost receipt"
        assert appeal.reviewed_at is None

        # Submitting does not touch memberships
        assert service.get_membership(USER_ID, business.id) is None

    def test_zero_points_expected_rejected(self, service, business):
        with pytest.raises(InvalidAmountError):
            service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 0, "lost receipt")

        assert service.list_pending_appeals(business.id) == []
        assert service.list_user_appeals(USER_ID) == []

    def test_zero_points_is_invalid_points(self, service, business):
        with pytest.raises(InvalidPointsError):
            service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 0, "lost receipt")

    def test_negative_amount_rejected(self, service, business):
        with pytest.raises(InvalidAmountError):
            service.submit_appeal(USER_ID, business.id, "Latte", -1, 10, "lost receipt")

        assert service.list_pending_appeals(business.id) == []

    @pytest.mark.parametrize("amount", [float("nan"), "NaN", "Infinity", float("-inf"), Decimal("sNaN"), "four"])
    def test_non_finite_amount_rejected(self, service, business, amount):
        with pytest.raises(InvalidAmountError):
            service.submit_appeal(USER_ID, business.id, "Latte", amount, 20, "lost receipt")

        assert service.list_pending_appeals(business.id) == []

    @pytest.mark.parametrize("points", [2.5, 20.0, "20", True])
    def test_non_integer_points_rejected(self, service, business, points):
        with pytest.raises(InvalidPointsError):
            service.submit_appeal(USER_ID, business.id, "Latte", 4.50, points, "lost receipt")

        assert service.list_pending_appeals(business.id) == []

    def test_zero_amount_allowed(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Free refill", 0, 5, "promo")
        assert appeal.amount == Decimal("0")

    def test_unknown_business_rejected(self, service):
        with pytest.raises(BusinessNotFoundError):
            service.submit_appeal(USER_ID, MISSING_ID, "Latte", 4.50, 20, "lost receipt")

    def test_get_unknown_appeal(self, service):
        with pytest.raises(AppealNotFoundError):
            service.get_appeal(MISSING_ID)


class TestPendingQueue:
    """Tests for the admin review queue."""

    def test_pending_oldest_first(self, service, business):
        first = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "first")
        second = service.submit_appeal(OTHER_USER_ID, business.id, "Mocha", 5.00, 25, "second")

        pending = service.list_pending_appeals(business.id)

        assert [a.id for a in pending] == [first.id, second.id]
        assert pending[0].submitted_at <= pending[1].submitted_at

    def test_pending_scoped_to_business(self, service, business, other_business):
        mine = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "coffee")
        service.submit_appeal(USER_ID, other_business.id, "Novel", 12.00, 40, "book")

        assert [a.id for a in service.list_pending_appeals(business.id)] == [mine.id]

    def test_resolved_appeals_leave_queue(self, service, business):
        approved = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "a")
        rejected = service.submit_appeal(USER_ID, business.id, "Mocha", 5.00, 25, "b")
        waiting = service.submit_appeal(USER_ID, business.id, "Tea", 3.00, 10, "c")

        service.approve_appeal(approved.id)
        service.reject_appeal(rejected.id, "duplicate")

        assert [a.id for a in service.list_pending_appeals(business.id)] == [waiting.id]

    def test_user_history_newest_first(self, service, business):
        first = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "a")
        second = service.submit_appeal(USER_ID, business.id, "Mocha", 5.00, 25, "b")

        history = service.list_user_appeals(USER_ID)

        assert [a.id for a in history] == [second.id, first.id]


class TestApproveAppeal:
    """Tests for the approval flow."""

    def test_approve_creates_membership_and_credits(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        approved, membership = service.approve_appeal(appeal.id, reviewer="admin@cornercoffee.example")

        assert approved.status == AppealStatus.APPROVED
        assert approved.reviewed_at is not None
        assert approved.admin_reviewed_by == "admin@cornercoffee.example"
        assert approved.rejection_reason is None

        assert membership.points_balance == 20
        assert len(membership.purchases) == 1
        purchase = membership.purchases[0]
        assert purchase.item == "Latte"
        assert purchase.points_earned == 20
        assert purchase.status == AppealStatus.APPROVED
        assert purchase.appeal_id == appeal.id

        stored = service.get_membership(USER_ID, business.id)
        assert stored.points_balance == 20
        assert service.get_appeal(appeal.id).status == AppealStatus.APPROVED

    def test_approve_adds_to_existing_membership(self, service, business):
        service.grant_purchase(USER_ID, business.id, "Espresso", 3, 15)
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        _, membership = service.approve_appeal(appeal.id)

        assert membership.points_balance == 35
        assert len(membership.purchases) == 2
        assert len(service.list_memberships(USER_ID)) == 1

    def test_approve_twice_fails(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")
        service.approve_appeal(appeal.id)

        with pytest.raises(AlreadyResolvedError) as exc_info:
            service.approve_appeal(appeal.id)

        assert exc_info.value.status == "approved"
        membership = service.get_membership(USER_ID, business.id)
        assert membership.points_balance == 20
        assert len(membership.purchases) == 1

    def test_concurrent_approvals_apply_once(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")
        barrier = threading.Barrier(4)

        def approve():
            barrier.wait()
            try:
                service.approve_appeal(appeal.id)
                return "ok"
            except AlreadyResolvedError:
                return "already"

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda _: approve(), range(4)))

        assert results.count("ok") == 1
        assert results.count("already") == 3

        membership = service.get_membership(USER_ID, business.id)
        assert membership.points_balance == 20
        assert len(membership.purchases) == 1

    def test_approve_unknown_appeal(self, service):
        with pytest.raises(AppealNotFoundError):
            service.approve_appeal(MISSING_ID)


class TestRejectAppeal:
    """Tests for the rejection flow."""

    def test_reject_records_reason(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        rejected = service.reject_appeal(appeal.id, "No matching sale", reviewer="admin")

        assert rejected.status == AppealStatus.REJECTED
        assert rejected.rejection_reason == "No matching sale"
        assert rejected.admin_reviewed_by == "admin"
        assert rejected.reviewed_at is not None

    def test_reject_empty_reason_uses_default(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        rejected = service.reject_appeal(appeal.id, "")

        assert rejected.rejection_reason == "No reason provided."

    def test_reject_never_touches_membership(self, service, business):
        service.grant_purchase(USER_ID, business.id, "Espresso", 3, 15)
        before = service.get_membership(USER_ID, business.id)
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        service.reject_appeal(appeal.id, "Not found in register")

        assert service.get_membership(USER_ID, business.id) == before

    def test_reject_without_membership_creates_none(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        service.reject_appeal(appeal.id, "Not found in register")

        assert service.get_membership(USER_ID, business.id) is None
        assert service.list_memberships(USER_ID) == []

    def test_reject_approved_appeal_fails(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")
        service.approve_appeal(appeal.id)

        with pytest.raises(AlreadyResolvedError):
            service.reject_appeal(appeal.id, "Changed my mind")

        assert service.get_appeal(appeal.id).status == AppealStatus.APPROVED
        assert service.get_membership(USER_ID, business.id).points_balance == 20

    def test_approve_rejected_appeal_fails(self, service, business):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")
        service.reject_appeal(appeal.id, "duplicate")

        with pytest.raises(AlreadyResolvedError):
            service.approve_appeal(appeal.id)

        assert service.get_appeal(appeal.id).status == AppealStatus.REJECTED
        assert service.get_membership(USER_ID, business.id) is None


class TestBalanceApplicationFailures:
    """Tests for retries of the balance step after approval."""

    def test_transient_failure_is_retried(self, service, business, monkeypatch):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")
        original = service.memberships.append_purchase
        calls = {"count": 0}

        def flaky(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] < 3:
                raise RuntimeError("storage unavailable")
            return original(*args, **kwargs)

        monkeypatch.setattr(service.memberships, "append_purchase", flaky)

        _, membership = service.approve_appeal(appeal.id)

        assert calls["count"] == 3
        assert membership.points_balance == 20
        assert len(membership.purchases) == 1

    def test_exhausted_retries_raise_inconsistent(self, service, business, monkeypatch, caplog):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        def broken(*args, **kwargs):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(service.memberships, "append_purchase", broken)

        with caplog.at_level(logging.CRITICAL, logger="loyalty.service"):
            with pytest.raises(InconsistentLedgerError) as exc_info:
                service.approve_appeal(appeal.id)

        assert exc_info.value.appeal_id == appeal.id
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

        # The approval itself is permanent
        assert service.get_appeal(appeal.id).status == AppealStatus.APPROVED
        assert service.get_membership(USER_ID, business.id) is None

    def test_reconcile_applies_missing_points_once(self, service, business, monkeypatch):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")

        def broken(*args, **kwargs):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(service.memberships, "append_purchase", broken)
        with pytest.raises(InconsistentLedgerError):
            service.approve_appeal(appeal.id)
        monkeypatch.undo()

        repaired = service.reconcile_appeals()

        assert [a.id for a in repaired] == [appeal.id]
        membership = service.get_membership(USER_ID, business.id)
        assert membership.points_balance == 20
        assert membership.purchases[0].id == appeal_purchase_id(appeal.id)

        assert service.reconcile_appeals() == []
        assert service.get_membership(USER_ID, business.id).points_balance == 20

    def test_reconcile_waits_for_approval_in_flight(self, service, business, monkeypatch, caplog):
        appeal = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "lost receipt")
        original = service.memberships.append_purchase
        status_flipped = threading.Event()
        release = threading.Event()

        def slow(*args, **kwargs):
            status_flipped.set()
            release.wait(timeout=5)
            return original(*args, **kwargs)

        monkeypatch.setattr(service.memberships, "append_purchase", slow)

        with ThreadPoolExecutor(max_workers=2) as pool:
            approval = pool.submit(service.approve_appeal, appeal.id)
            assert status_flipped.wait(timeout=5)
            assert service.get_appeal(appeal.id).status == AppealStatus.APPROVED

            with caplog.at_level(logging.WARNING, logger="loyalty.service"):
                reconcile = pool.submit(service.reconcile_appeals, business.id)
                time.sleep(0.1)
                release.set()
                approval.result(timeout=5)
                repaired = reconcile.result(timeout=5)

        assert repaired == []
        assert not any("Reconciling" in r.getMessage() for r in caplog.records)
        assert service.get_membership(USER_ID, business.id).points_balance == 20

    def test_reconcile_ignores_applied_and_pending(self, service, business):
        applied = service.submit_appeal(USER_ID, business.id, "Latte", 4.50, 20, "a")
        service.submit_appeal(USER_ID, business.id, "Mocha", 5.00, 25, "b")
        service.approve_appeal(applied.id)

        assert service.reconcile_appeals(business.id) == []
        assert service.get_membership(USER_ID, business.id).points_balance == 20


class TestLatteWalkthrough:
    """End-to-end appeal walkthrough for a user without a membership."""

    def test_latte_appeal(self, service, business):
        assert service.get_membership(USER_ID, business.id) is None

        appeal = service.submit_appeal(USER_ID, business.id, "Latte", Decimal("4.50"), 20, "lost receipt")
        assert appeal.status == AppealStatus.PENDING

        service.approve_appeal(appeal.id)

        assert service.get_appeal(appeal.id).status == AppealStatus.APPROVED
        membership = service.get_membership(USER_ID, business.id)
        assert membership is not None
        assert membership.points_balance == 20
        assert [(p.item, p.points_earned, p.status) for p in membership.purchases] == [
            ("Latte", 20, AppealStatus.APPROVED)
        ]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
