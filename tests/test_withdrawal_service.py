# tests/test_withdrawal_service.py
"""
Tests for WithdrawalService: debit on request, refund on rejection.

Run:
    pytest tests/test_withdrawal_service.py -v
"""
import threading
from decimal import Decimal

import pytest

from models import Withdrawal
from mlm_system.config.income import IncomeCategory
from mlm_system.services.ledger_service import LedgerService
from mlm_system.services.withdrawal_service import WithdrawalService
from mlm_system.exceptions import (
    InvalidAmount,
    InvalidWithdrawal,
    InsufficientBalance,
    MemberNotFound,
)

UPI = {"upiId": "member@upi"}


@pytest.fixture
def funded_member(session, make_member):
    """Active member with balance 500."""
    user_id = make_member(active=True)
    LedgerService(session).credit(user_id, IncomeCategory.DIRECT_INCOME, Decimal("500"))
    session.commit()
    return user_id


@pytest.fixture
def service(session, locks):
    return WithdrawalService(session, locks)


def balance(session, user_id):
    return LedgerService(session).getWallet(user_id).balance


# =============================================================================
# TEST CLASS: request
# =============================================================================

class TestRequest:
    """Tests for requestWithdrawal."""

    def test_request_debits_immediately(self, session, service, funded_member, journal):
        withdrawal = service.requestWithdrawal(funded_member, Decimal("200"), "upi", UPI)

        assert withdrawal.status == "pending"
        assert withdrawal.debitTransactionID is not None
        assert balance(session, funded_member) == Decimal("300")
        assert journal.count(funded_member, "withdrawal") == 1

        wallet = LedgerService(session).getWallet(funded_member)
        assert wallet.withdrawnAmount == Decimal("200")
        assert wallet.totalEarnings == Decimal("500")

    def test_below_minimum(self, session, service, funded_member):
        with pytest.raises(InvalidWithdrawal):
            service.requestWithdrawal(funded_member, Decimal("149.99"), "upi", UPI)
        assert balance(session, funded_member) == Decimal("500")

    def test_non_positive_amount(self, service, funded_member):
        with pytest.raises(InvalidAmount):
            service.requestWithdrawal(funded_member, Decimal("0"), "upi", UPI)

    def test_sub_cent_amount(self, session, service, funded_member):
        with pytest.raises(InvalidAmount):
            service.requestWithdrawal(funded_member, Decimal("150.005"), "upi", UPI)

        assert session.query(Withdrawal).count() == 0
        assert balance(session, funded_member) == Decimal("500")

    def test_insufficient_balance_creates_nothing(self, session, service, funded_member):
        with pytest.raises(InsufficientBalance):
            service.requestWithdrawal(funded_member, Decimal("500.01"), "upi", UPI)

        assert session.query(Withdrawal).count() == 0
        assert balance(session, funded_member) == Decimal("500")

    def test_whole_balance_can_be_withdrawn(self, session, service, funded_member):
        service.requestWithdrawal(funded_member, Decimal("500"), "upi", UPI)
        assert balance(session, funded_member) == Decimal("0")

    @pytest.mark.parametrize("method, details", [
        ("paypal", None),
        ("upi", {"upiId": ""}),
        ("bank", {"bankDetails": {"accountNumber": "123", "ifscCode": "IFSC0001"}}),
    ])
    def test_bad_payment_details(self, service, funded_member, method, details):
        with pytest.raises(InvalidWithdrawal):
            service.requestWithdrawal(funded_member, Decimal("200"), method, details)

    def test_bank_details(self, service, funded_member):
        details = {"bankDetails": {
            "accountNumber": "1234567890",
            "ifscCode": "SBIN0000001",
            "accountHolderName": "Test Member",
            "bankName": "SBI"
        }}

        withdrawal = service.requestWithdrawal(funded_member, Decimal("150"), "bank", details)

        assert withdrawal.paymentMethod == "bank"
        assert withdrawal.paymentDetails["bankDetails"]["ifscCode"] == "SBIN0000001"

    def test_inactive_or_blocked_member(self, session, service, make_member):
        inactive = make_member()
        blocked = make_member(active=True, status="blocked")

        with pytest.raises(InvalidWithdrawal):
            service.requestWithdrawal(inactive, Decimal("200"), "upi", UPI)
        with pytest.raises(InvalidWithdrawal):
            service.requestWithdrawal(blocked, Decimal("200"), "upi", UPI)

    def test_unknown_member(self, service):
        with pytest.raises(MemberNotFound):
            service.requestWithdrawal(999999, Decimal("200"), "upi", UPI)


# =============================================================================
# TEST CLASS: resolution
# =============================================================================

class TestResolution:
    """Tests for approve / reject."""

    def test_reject_refunds_exactly(self, session, service, funded_member, journal):
        """
        TEST: request 200 then reject - balance restored, one refund row.
        """
        withdrawal = service.requestWithdrawal(funded_member, Decimal("200"), "upi", UPI)
        withdrawal_id = withdrawal.withdrawalID

        rejected = service.rejectWithdrawal(withdrawal_id, "wrong UPI")

        assert rejected.status == "rejected"
        assert rejected.rejectionReason == "wrong UPI"
        assert rejected.refundTransactionID is not None
        assert balance(session, funded_member) == Decimal("500")
        assert journal.count(funded_member, "refund") == 1

        wallet = LedgerService(session).getWallet(funded_member)
        assert wallet.withdrawnAmount == Decimal("0")
        assert LedgerService(session).reconcile(funded_member)["isConsistent"]

    def test_double_reject_refunds_once(self, session, service, funded_member, journal):
        withdrawal_id = service.requestWithdrawal(funded_member, Decimal("200"), "upi", UPI).withdrawalID

        service.rejectWithdrawal(withdrawal_id)
        service.rejectWithdrawal(withdrawal_id)

        assert journal.count(funded_member, "refund") == 1
        assert balance(session, funded_member) == Decimal("500")

    def test_approve_keeps_funds_debited(self, session, service, funded_member):
        withdrawal_id = service.requestWithdrawal(funded_member, Decimal("200"), "upi", UPI).withdrawalID

        approved = service.approveWithdrawal(withdrawal_id, transactionRef="UTR123")

        assert approved.status == "approved"
        assert approved.transactionRef == "UTR123"
        assert balance(session, funded_member) == Decimal("300")

        # Approving again is a no-op
        assert service.approveWithdrawal(withdrawal_id).status == "approved"

    def test_reject_after_approve_raises(self, session, service, funded_member, journal):
        withdrawal_id = service.requestWithdrawal(funded_member, Decimal("200"), "upi", UPI).withdrawalID
        service.approveWithdrawal(withdrawal_id)

        with pytest.raises(InvalidWithdrawal):
            service.rejectWithdrawal(withdrawal_id)

        assert journal.count(funded_member, "refund") == 0

    def test_approve_after_reject_raises(self, service, funded_member):
        withdrawal_id = service.requestWithdrawal(funded_member, Decimal("200"), "upi", UPI).withdrawalID
        service.rejectWithdrawal(withdrawal_id)

        with pytest.raises(InvalidWithdrawal):
            service.approveWithdrawal(withdrawal_id)

    def test_unknown_withdrawal(self, service):
        with pytest.raises(InvalidWithdrawal):
            service.rejectWithdrawal(424242)


# =============================================================================
# TEST CLASS: queries
# =============================================================================

class TestQueries:
    """Tests for findPendingWithdrawal / getWithdrawalHistory."""

    def test_find_pending_and_history(self, service, funded_member):
        first = service.requestWithdrawal(funded_member, Decimal("150"), "upi", UPI).withdrawalID
        second = service.requestWithdrawal(funded_member, Decimal("150"), "upi", UPI).withdrawalID

        assert service.findPendingWithdrawal(funded_member, Decimal("150")).withdrawalID == first
        assert service.findPendingWithdrawal(funded_member, Decimal("200")) is None

        history = service.getWithdrawalHistory(funded_member)
        assert [w.withdrawalID for w in history] == [second, first]


# =============================================================================
# TEST CLASS: concurrency
# =============================================================================

class TestConcurrency:
    """Tests with real threads and separate sessions."""

    def test_concurrent_requests_never_overdraw(self, session, session_factory, make_member, locks, journal):
        """
        TEST: 3 threads request 200 each from a balance of 300, exactly one succeeds.
        """
        user_id = make_member(active=True)
        LedgerService(session).credit(user_id, IncomeCategory.DIRECT_INCOME, Decimal("300"))
        session.commit()

        succeeded = []
        rejected = []
        errors = []

        def worker():
            worker_session = session_factory()
            try:
                withdrawal = WithdrawalService(worker_session, locks).requestWithdrawal(
                    user_id, Decimal("200"), "upi", UPI
                )
                succeeded.append(withdrawal.withdrawalID)
            except InsufficientBalance as e:
                rejected.append(e)
            except Exception as e:
                errors.append(e)
            finally:
                worker_session.close()

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(succeeded) == 1
        assert len(rejected) == 2

        assert balance(session, user_id) == Decimal("100")
        assert journal.count(user_id, "withdrawal") == 1
        assert session.query(Withdrawal).filter_by(userID=user_id).count() == 1
        assert LedgerService(session).findDiscrepancies([user_id]) == []
