from typing import Optional
from uuid import UUID


class LoyaltyError(Exception):
    pass


class NotFoundError(LoyaltyError):
    pass


class BusinessNotFoundError(NotFoundError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class AppealNotFoundError(NotFoundError):
    pass


class RewardNotFoundError(NotFoundError):
    pass


class MembershipNotFoundError(NotFoundError):
    pass


class InvalidAmountError(LoyaltyError):
    pass


class InvalidPointsError(InvalidAmountError):
    pass


class DuplicateRewardError(LoyaltyError):
    pass


class DuplicateEmailError(LoyaltyError):
    pass


class InsufficientPointsError(LoyaltyError):
    def __init__(self, available: int, requested: int):
        super().__init__(f"Insufficient points: {requested} requested, {available} available")
        self.available = available
        self.requested = requested


class AlreadyResolvedError(LoyaltyError):
    """Raised when an appeal has left the pending state.

    Callers should treat this as a signal to refresh their view rather
    than as a failure of the user's action.
    """

    def __init__(self, appeal_id: UUID, status: str):
        super().__init__(f"Appeal {appeal_id} is already {status}")
        self.appeal_id = appeal_id
        self.status = status


class InconsistentLedgerError(LoyaltyError):
    """An approved appeal whose points could not be applied to the membership."""

    def __init__(self, appeal_id: UUID, cause: Optional[BaseException] = None):
        message = f"Appeal {appeal_id} is approved but its points were not applied"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.appeal_id = appeal_id
        self.cause = cause
