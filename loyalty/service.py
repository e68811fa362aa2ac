import logging
import time
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID, uuid5

from offers import OfferGenerator, OfferInput, PersonalizedOffer

from .appeals import AppealQueue, is_whole_points, to_amount
from .config import LoyaltySettings
from .directory import BusinessDirectory
from .errors import (
    AlreadyResolvedError,
    BusinessNotFoundError,
    InconsistentLedgerError,
    InsufficientPointsError,
    InvalidAmountError,
    InvalidPointsError,
    MembershipNotFoundError,
)
from .memberships import MembershipStore
from .models import (
    AppealStatus,
    Business,
    BusinessMembers,
    JoinResult,
    Membership,
    Purchase,
    PurchaseAppeal,
    Reward,
    User,
    UserProfile,
)
from .storage import InMemoryStorage
from .users import UserRegistry

logger = logging.getLogger(__name__)

# Namespace for purchase ids derived from appeal ids
APPEAL_PURCHASE_NAMESPACE = UUID("6f1c1f0e-5a43-4f0b-9a55-3c8f2f1d7e10")

WELCOME_BONUS_ITEM = "Welcome Bonus"
DEFAULT_REJECTION_REASON = "No reason provided."


def appeal_purchase_id(appeal_id: UUID) -> UUID:
    return uuid5(APPEAL_PURCHASE_NAMESPACE, str(appeal_id))


class LedgerService:
    """
    Membership ledger and purchase-appeal workflow.

    Appeal resolution is the linearization point: `mark_resolved` flips
    the status under the business lock, and only the caller that wins the
    flip applies the points. The approval keeps holding the business lock
    while it applies the purchase, and the purchase id is derived from the
    appeal id, so a retried or reconciled application never counts twice.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[LoyaltySettings] = None,
        offer_generator: Optional[OfferGenerator] = None,
    ):
        self.settings = settings or LoyaltySettings()
        self.storage = storage or InMemoryStorage(seed=self.settings.seed_demo_data)
        self.directory = BusinessDirectory(
            self.storage,
            join_code_length=self.settings.join_code_length,
            join_code_attempts=self.settings.join_code_attempts,
        )
        self.users = UserRegistry(self.storage)
        self.memberships = MembershipStore(self.storage, self.directory)
        self.appeals = AppealQueue(self.storage, self.directory)
        self.offer_generator = offer_generator or OfferGenerator(
            api_key=self.settings.groq_api_key,
            model=self.settings.groq_model,
        )

    @classmethod
    def from_settings(cls, settings: LoyaltySettings) -> "LedgerService":
        return cls(storage=InMemoryStorage(seed=settings.seed_demo_data), settings=settings)

    def close(self) -> None:
        self.storage.close()

    # Businesses and rewards

    def create_business(self, name: str, admin_owner: str) -> Business:
        return self.directory.create_business(name, admin_owner)

    def get_business(self, business_id: UUID) -> Business:
        return self.directory.get_business(business_id)

    def find_business_by_join_code(self, code: str) -> Optional[Business]:
        return self.directory.find_by_join_code(code)

    def add_reward(self, business_id: UUID, reward: Reward) -> Business:
        return self.directory.add_reward(business_id, reward)

    def update_reward(self, business_id: UUID, reward: Reward) -> Business:
        return self.directory.update_reward(business_id, reward)

    def delete_reward(self, business_id: UUID, reward_id: UUID) -> Business:
        return self.directory.delete_reward(business_id, reward_id)

    # Users and memberships

    def register_user(self, name: str, email: str, default_business_id: Optional[UUID] = None) -> User:
        if default_business_id is not None and not self.directory.exists(default_business_id):
            raise BusinessNotFoundError(f"Business {default_business_id} not found")

        user = self.users.register(name, email)
        if default_business_id is not None:
            self.memberships.enroll(user.id, default_business_id)
        return user

    def get_user_profile(self, user_id: UUID) -> UserProfile:
        user = self.users.get(user_id)
        return UserProfile(user=user, memberships=self.memberships.list_memberships(user_id))

    def enroll_membership(self, user_id: UUID, business_id: UUID) -> Membership:
        return self.memberships.enroll(user_id, business_id)

    def get_membership(self, user_id: UUID, business_id: UUID) -> Optional[Membership]:
        return self.memberships.get_membership(user_id, business_id)

    def list_memberships(self, user_id: UUID) -> list[Membership]:
        return self.memberships.list_memberships(user_id)

    def list_business_members(self, business_id: UUID) -> BusinessMembers:
        """Members of a business with their combined points and purchase counts."""
        self.directory.get_business(business_id)
        with self.storage.business_lock(business_id):
            members = self.memberships.list_for_business(business_id)

        return BusinessMembers(
            business_id=business_id,
            members=members,
            total_members=len(members),
            total_points=sum(m.points_balance for m in members),
            total_purchases=sum(len(m.purchases) for m in members),
        )

    def join_by_code(self, user_id: UUID, join_code: str) -> JoinResult:
        business = self.directory.find_by_join_code(join_code)
        if business is None:
            raise BusinessNotFoundError(f"No business with join code {join_code!r}")

        with self.storage.business_lock(business.id):
            membership, created = self.memberships.enroll_or_get(user_id, business.id)
            if not created:
                return JoinResult(
                    membership=membership,
                    joined=False,
                    message=f"You are already a member of {business.name}.",
                )

            bonus = self.settings.welcome_bonus_points
            if bonus > 0:
                membership = self.memberships.append_purchase(
                    user_id, business.id,
                    Purchase(item=WELCOME_BONUS_ITEM, amount=Decimal("0"), points_earned=bonus),
                )

        logger.info("User %s joined business %s via join code", user_id, business.id)
        return JoinResult(
            membership=membership,
            joined=True,
            message=f"Successfully joined {business.name} (+{bonus} points)!",
        )

    def grant_purchase(
        self,
        user_id: UUID,
        business_id: UUID,
        item: str,
        amount: Union[Decimal, float, int, str],
        points_earned: int,
    ) -> Membership:
        """Direct admin grant; counts immediately and bypasses the appeal workflow."""
        amount = to_amount(amount)
        if amount < 0:
            raise InvalidAmountError(f"Amount must not be negative, got {amount}")
        if not is_whole_points(points_earned) or points_earned < 0:
            raise InvalidPointsError(f"Granted points must be a non-negative whole number, got {points_earned!r}")

        return self.memberships.append_purchase(
            user_id, business_id,
            Purchase(item=item, amount=amount, points_earned=points_earned),
        )

    def redeem_reward(self, user_id: UUID, business_id: UUID, reward_id: UUID) -> Membership:
        reward = self.directory.get_reward(business_id, reward_id)

        with self.storage.business_lock(business_id):
            membership = self.memberships.get_membership(user_id, business_id)
            if membership is None:
                raise MembershipNotFoundError(f"User {user_id} is not a member of business {business_id}")
            if membership.points_balance < reward.points_cost:
                raise InsufficientPointsError(membership.points_balance, reward.points_cost)

            membership = self.memberships.append_purchase(
                user_id, business_id,
                Purchase(item=f"Redeemed: {reward.title}", amount=Decimal("0"), points_earned=-reward.points_cost),
            )

        logger.info("User %s redeemed reward %s at business %s", user_id, reward_id, business_id)
        return membership

    # Appeals

    def submit_appeal(
        self,
        user_id: UUID,
        business_id: UUID,
        item: str,
        amount: Union[Decimal, float, int, str],
        points_expected: int,
        reason: str,
    ) -> PurchaseAppeal:
        return self.appeals.submit(user_id, business_id, item, amount, points_expected, reason)

    def get_appeal(self, appeal_id: UUID) -> PurchaseAppeal:
        return self.appeals.get(appeal_id)

    def list_pending_appeals(self, business_id: UUID) -> list[PurchaseAppeal]:
        return self.appeals.list_pending(business_id)

    def list_user_appeals(self, user_id: UUID) -> list[PurchaseAppeal]:
        return self.appeals.list_for_user(user_id)

    def approve_appeal(self, appeal_id: UUID, reviewer: Optional[str] = None) -> tuple[PurchaseAppeal, Membership]:
        """
        Approve a pending appeal and credit its points.

        Returns:
            The approved appeal and the updated membership

        Raises:
            AppealNotFoundError: If the appeal does not exist
            AlreadyResolvedError: If the appeal was already approved or rejected
            InconsistentLedgerError: If the points could not be applied after retries
        """
        business_id = self.appeals.get(appeal_id).business_id

        with self.storage.business_lock(business_id):
            try:
                appeal = self.appeals.mark_resolved(appeal_id, AppealStatus.APPROVED, reviewer)
            except AlreadyResolvedError as e:
                logger.info("Approve of appeal %s ignored: already %s", appeal_id, e.status)
                raise

            membership = self._apply_with_retry(appeal)

        return appeal, membership

    def reject_appeal(self, appeal_id: UUID, reason: str, reviewer: Optional[str] = None) -> PurchaseAppeal:
        try:
            return self.appeals.mark_resolved(
                appeal_id,
                AppealStatus.REJECTED,
                reviewer,
                rejection_reason=reason or DEFAULT_REJECTION_REASON,
            )
        except AlreadyResolvedError as e:
            logger.info("Reject of appeal %s ignored: already %s", appeal_id, e.status)
            raise

    def reconcile_appeals(self, business_id: Optional[UUID] = None) -> list[PurchaseAppeal]:
        """
        Apply approved appeals whose points never reached the membership.

        Returns the appeals that were repaired.
        """
        repaired = []
        for appeal in self.appeals.list_by_status(AppealStatus.APPROVED, business_id):
            # An approval in flight holds this lock until its credit lands
            with self.storage.business_lock(appeal.business_id):
                membership = self.memberships.get_membership(appeal.user_id, appeal.business_id)
                if membership is not None and membership.has_purchase(appeal_purchase_id(appeal.id)):
                    continue

                logger.warning("Reconciling approved appeal %s", appeal.id)
                self._apply_with_retry(appeal)
            repaired.append(appeal)
        return repaired

    def _apply_with_retry(self, appeal: PurchaseAppeal) -> Membership:
        purchase = Purchase(
            id=appeal_purchase_id(appeal.id),
            item=appeal.item,
            amount=appeal.amount,
            points_earned=appeal.points_expected,
            status=AppealStatus.APPROVED,
            appeal_id=appeal.id,
        )
        attempts = max(1, self.settings.apply_retry_attempts)
        last_error = None

        for attempt in range(1, attempts + 1):
            try:
                return self.memberships.append_purchase(appeal.user_id, appeal.business_id, purchase)
            except Exception as e:
                last_error = e
                logger.warning(
                    "Applying appeal %s failed (attempt %d/%d): %s",
                    appeal.id, attempt, attempts, e,
                )
                if attempt < attempts and self.settings.apply_retry_delay > 0:
                    time.sleep(self.settings.apply_retry_delay)

        logger.critical(
            "LEDGER INCONSISTENCY: appeal %s is approved but %d points were not applied to %s/%s",
            appeal.id, appeal.points_expected, appeal.user_id, appeal.business_id,
        )
        raise InconsistentLedgerError(appeal.id, last_error) from last_error

    # Offers

    def generate_offer(
        self,
        user_id: UUID,
        business_id: Optional[UUID] = None,
        preferences: str = "",
    ) -> PersonalizedOffer:
        if business_id is not None:
            membership = self.memberships.get_membership(user_id, business_id)
            memberships = [membership] if membership else []
        else:
            memberships = self.memberships.list_memberships(user_id)

        history = "; ".join(
            f"{p.item} at {m.business_name} ({p.points_earned:+d} pts)"
            for m in memberships
            for p in m.purchases
        )
        return self.offer_generator.generate(
            OfferInput(user_id=str(user_id), purchase_history=history, preferences=preferences)
        )
