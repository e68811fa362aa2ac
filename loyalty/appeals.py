import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Union
from uuid import UUID

from .directory import BusinessDirectory
from .errors import AlreadyResolvedError, AppealNotFoundError, InvalidAmountError, InvalidPointsError
from .models import AppealStatus, PurchaseAppeal, utcnow
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


def to_amount(value: Union[Decimal, float, int, str]) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount must be a finite number, got {value!r}")
    return amount


def is_whole_points(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class AppealQueue:
    """Purchase appeals awaiting review, plus their resolved history."""

    def __init__(self, storage: InMemoryStorage, directory: BusinessDirectory):
        self.storage = storage
        self.directory = directory

    def submit(
        self,
        user_id: UUID,
        business_id: UUID,
        item: str,
        amount: Union[Decimal, float, int, str],
        points_expected: int,
        reason: str,
    ) -> PurchaseAppeal:
        amount = to_amount(amount)
        if amount < 0:
            raise InvalidAmountError(f"Amount must not be negative, got {amount}")
        if not is_whole_points(points_expected) or points_expected <= 0:
            raise InvalidPointsError(f"Points expected must be a positive whole number, got {points_expected!r}")
        # Raises BusinessNotFoundError before anything is stored
        self.directory.get_business(business_id)

        with self.storage.business_lock(business_id):
            appeal = PurchaseAppeal(
                user_id=user_id,
                business_id=business_id,
                item=item,
                amount=amount,
                points_expected=points_expected,
                appeal_reason=reason,
                submitted_at=utcnow(),
                sequence=self.storage.next_sequence(),
            )
            self.storage.appeals[appeal.id] = appeal

        logger.info("Appeal %s submitted by %s for business %s", appeal.id, user_id, business_id)
        return appeal.model_copy()

    def get(self, appeal_id: UUID) -> PurchaseAppeal:
        return self._get(appeal_id).model_copy()

    def list_pending(self, business_id: UUID) -> list[PurchaseAppeal]:
        return self.list_by_status(AppealStatus.PENDING, business_id)

    def list_by_status(
        self,
        status: Optional[AppealStatus] = None,
        business_id: Optional[UUID] = None,
    ) -> list[PurchaseAppeal]:
        appeals = [
            a for a in list(self.storage.appeals.values())
            if (business_id is None or a.business_id == business_id)
            and (status is None or a.status == status)
        ]
        appeals.sort(key=lambda a: (a.submitted_at, a.sequence))
        return [a.model_copy() for a in appeals]

    def list_for_user(self, user_id: UUID) -> list[PurchaseAppeal]:
        appeals = [a for a in list(self.storage.appeals.values()) if a.user_id == user_id]
        appeals.sort(key=lambda a: (a.submitted_at, a.sequence), reverse=True)
        return [a.model_copy() for a in appeals]

    def mark_resolved(
        self,
        appeal_id: UUID,
        outcome: AppealStatus,
        reviewer: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> PurchaseAppeal:
        """
        Move a pending appeal to its terminal state.

        The status check and the write happen under the business lock, so
        of two concurrent resolvers exactly one succeeds.

        Raises:
            AppealNotFoundError: If the appeal does not exist
            AlreadyResolvedError: If the appeal is no longer pending
        """
        if outcome == AppealStatus.PENDING:
            raise ValueError("An appeal can only be resolved as approved or rejected")

        appeal = self._get(appeal_id)
        with self.storage.business_lock(appeal.business_id):
            appeal = self._get(appeal_id)
            if not appeal.is_pending():
                raise AlreadyResolvedError(appeal_id, appeal.status.value)

            resolved = appeal.model_copy(update={
                "status": outcome,
                "reviewed_at": utcnow(),
                "admin_reviewed_by": reviewer,
                "rejection_reason": rejection_reason if outcome == AppealStatus.REJECTED else None,
            })
            self.storage.appeals[appeal_id] = resolved

        logger.info("Appeal %s marked %s by %s", appeal_id, outcome.value, reviewer or "unknown reviewer")
        return resolved.model_copy()

    def _get(self, appeal_id: UUID) -> PurchaseAppeal:
        appeal = self.storage.appeals.get(appeal_id)
        if appeal is None:
            raise AppealNotFoundError(f"Appeal {appeal_id} not found")
        return appeal
