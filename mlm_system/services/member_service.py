# mlm_system/services/member_service.py
"""
Member service - registration and activation code (TPIN) redemption.

The referrer is fixed at registration from a referral code and never changes,
so the referral tree cannot contain cycles. Redeeming a code flips isActive
exactly once, commits, and only then triggers commission distribution.
"""
import secrets
from typing import Dict, List, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session
import logging

from models.user import User
from models.activation_code import ActivationCode
from mlm_system.utils.member_locks import MemberLocks, memberLocks
from mlm_system.utils.time_machine import timeMachine
from mlm_system.exceptions import ActivationError, MemberNotFound

logger = logging.getLogger(__name__)

MAX_CODES_PER_REQUEST = 10


class MemberService:
    """Service for member registration and activation."""

    def __init__(self, session: Session, locks: Optional[MemberLocks] = None):
        self.session = session
        self.locks = locks or memberLocks

    def registerMember(
            self,
            email: str,
            firstname: str,
            surname: Optional[str] = None,
            referralCode: Optional[str] = None
    ) -> User:
        """
        Create an inactive member with wallet and matrix levels.

        Raises:
            MemberNotFound: referral code does not belong to anybody
            ValueError: email already registered
        """
        if self.session.query(User.userID).filter_by(email=email).first():
            raise ValueError(f"Email {email} is already registered")

        referrerId = None
        if referralCode:
            referrer = self.session.query(User).filter_by(referralCode=referralCode).first()
            if not referrer:
                raise MemberNotFound(None, f"referral code {referralCode}")
            referrerId = referrer.userID

        user = User(
            email=email,
            firstname=firstname,
            surname=surname,
            upline=referrerId,
            referralCode=self._generateReferralCode()
        )

        try:
            self.session.add(user)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Registered user {user.userID} ({email}), referrer={referrerId}")
        return user

    def issueActivationCodes(self, userId: int, quantity: int = 1) -> List[str]:
        """Generate 1..10 approved activation codes owned by a member."""
        if quantity < 1 or quantity > MAX_CODES_PER_REQUEST:
            raise ActivationError(f"Quantity must be between 1 and {MAX_CODES_PER_REQUEST}")

        user = self.session.get(User, userId)
        if not user:
            raise MemberNotFound(userId, "activation codes")

        codes = []
        for _ in range(quantity):
            code = self._generateActivationCode()
            self.session.add(ActivationCode(
                code=code,
                ownerID=userId,
                ownerEmail=user.email,
                status="approved"
            ))
            codes.append(code)

        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Issued {quantity} activation code(s) to user {userId}")
        return codes

    def redeemActivationCode(
            self,
            userId: int,
            code: str,
            processCommissions: bool = True
    ) -> Dict:
        """
        Activate a member with one of its codes.

        The activation is committed before commissions run; a failing
        commission run is logged and reported, the member stays active.

        Raises:
            MemberNotFound: unknown member
            ActivationError: bad code or member already active
        """
        user = self.session.get(User, userId)
        if not user:
            raise MemberNotFound(userId, "activation")

        activationCode = self.session.query(ActivationCode).filter_by(code=code).first()
        self._validateCode(activationCode, userId)

        if user.isActive:
            raise ActivationError(f"User {userId} is already active")

        codeId = activationCode.codeID
        now = timeMachine.now

        self.session.commit()

        with self.locks.hold([userId]):
            try:
                codeClaimed = self.session.execute(
                    update(ActivationCode)
                    .where(ActivationCode.codeID == codeId, ActivationCode.isUsed == False)
                    .values(isUsed=True, usedAt=now, usedByID=userId)
                ).rowcount

                userActivated = self.session.execute(
                    update(User)
                    .where(User.userID == userId, User.isActive == False)
                    .values(isActive=True, activatedAt=now)
                ).rowcount

                if codeClaimed != 1 or userActivated != 1:
                    raise ActivationError(
                        f"Activation of user {userId} with code {code} lost a race"
                    )

                self.session.commit()

            except Exception:
                self.session.rollback()
                raise

        logger.info(f"✓ User {userId} activated with code {code}")

        result = {"success": True, "userId": userId, "code": code, "commissions": None}

        if processCommissions:
            from mlm_system.services.commission_service import CommissionService
            try:
                result["commissions"] = CommissionService(self.session, self.locks).onMemberActivated(userId)
            except Exception as e:
                logger.error(f"Commission processing failed for user {userId}: {e}", exc_info=True)
                result["commissions"] = {"success": False, "userId": userId, "error": str(e)}

        return result

    def getReferrals(self, userId: int) -> List[User]:
        """Direct referrals of a member, active or not."""
        return self.session.query(User).filter_by(upline=userId).order_by(User.userID).all()

    def _validateCode(self, activationCode: Optional[ActivationCode], userId: int) -> None:
        if not activationCode:
            raise ActivationError("Invalid activation code")
        if activationCode.ownerID != userId:
            raise ActivationError(f"Activation code {activationCode.code} does not belong to user {userId}")
        if activationCode.status != "approved":
            raise ActivationError(f"Activation code {activationCode.code} is {activationCode.status}")
        if activationCode.isUsed:
            raise ActivationError(f"Activation code {activationCode.code} is already used")

    def _generateReferralCode(self) -> str:
        while True:
            code = secrets.token_hex(4).upper()
            if not self.session.query(User.userID).filter_by(referralCode=code).first():
                return code

    def _generateActivationCode(self) -> str:
        while True:
            code = secrets.token_hex(5).upper()
            if not self.session.query(ActivationCode.codeID).filter_by(code=code).first():
                return code
