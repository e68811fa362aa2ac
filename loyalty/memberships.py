"""
Membership store.

One membership per (user, business) pair, carrying the point balance
and the append-only purchase log. `append_purchase` is the only place a
balance changes.
"""

import logging
from typing import Optional
from uuid import UUID

from .directory import BusinessDirectory
from .models import Membership, Purchase
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class MembershipStore:
    def __init__(self, storage: InMemoryStorage, directory: BusinessDirectory):
        self.storage = storage
        self.directory = directory

    def enroll(self, user_id: UUID, business_id: UUID) -> Membership:
        """
        Enroll a user with a business.

        Idempotent: an existing membership is returned unchanged.

        Raises:
            BusinessNotFoundError: If the business does not exist
        """
        membership, _ = self.enroll_or_get(user_id, business_id)
        return membership

    def enroll_or_get(self, user_id: UUID, business_id: UUID) -> tuple[Membership, bool]:
        """Same as `enroll`, also reporting whether the membership was created."""
        with self.storage.business_lock(business_id):
            membership, created = self._get_or_create(user_id, business_id)
            return membership.model_copy(deep=True), created

    def get_membership(self, user_id: UUID, business_id: UUID) -> Optional[Membership]:
        membership = self.storage.memberships.get((user_id, business_id))
        return membership.model_copy(deep=True) if membership else None

    def list_memberships(self, user_id: UUID) -> list[Membership]:
        memberships = [m for (uid, _), m in list(self.storage.memberships.items()) if uid == user_id]
        memberships.sort(key=lambda m: m.enrolled_at)
        return [m.model_copy(deep=True) for m in memberships]

    def list_for_business(self, business_id: UUID) -> list[Membership]:
        memberships = [m for (_, bid), m in list(self.storage.memberships.items()) if bid == business_id]
        memberships.sort(key=lambda m: m.enrolled_at)
        return [m.model_copy(deep=True) for m in memberships]

    def append_purchase(self, user_id: UUID, business_id: UUID, purchase: Purchase) -> Membership:
        """
        Append a purchase and apply its points to the balance.

        Auto-enrolls the user when no membership exists yet. A purchase
        whose id is already in the log is not applied a second time.

        Raises:
            BusinessNotFoundError: If auto-enrollment cannot resolve the business
        """
        with self.storage.business_lock(business_id):
            membership, _ = self._get_or_create(user_id, business_id)

            if membership.has_purchase(purchase.id):
                logger.info(
                    "Purchase %s already recorded for %s/%s, skipping",
                    purchase.id, user_id, business_id,
                )
                return membership.model_copy(deep=True)

            membership.purchases.append(purchase)
            if purchase.counts_toward_balance:
                membership.points_balance += purchase.points_earned

            logger.info(
                "Applied %+d points to %s/%s (balance %d)",
                purchase.points_earned, user_id, business_id, membership.points_balance,
            )
            return membership.model_copy(deep=True)

    def _get_or_create(self, user_id: UUID, business_id: UUID) -> tuple[Membership, bool]:
        # Caller holds the business lock
        key = (user_id, business_id)
        membership = self.storage.memberships.get(key)
        if membership is not None:
            return membership, False

        business = self.directory.get_business(business_id)
        membership = Membership(
            user_id=user_id,
            business_id=business_id,
            business_name=business.name,
        )
        self.storage.memberships[key] = membership
        logger.info("Enrolled user %s with business %s", user_id, business_id)
        return membership, True
