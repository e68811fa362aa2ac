import itertools
import logging
import threading
from uuid import UUID

from .models import Business, Membership, PurchaseAppeal, Reward, User

logger = logging.getLogger(__name__)

DEMO_BUSINESS_ID = UUID("11111111-1111-1111-1111-111111111111")
DEMO_USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")


class InMemoryStorage:
    """
    Process-local tables for every loyalty entity.

    Constructed once at startup and handed to the repositories; nothing
    here is module state. Mutations of a business's memberships and
    appeals are serialized through `business_lock`.
    """

    def __init__(self, seed: bool = False):
        self.businesses: dict[UUID, Business] = {}
        self.users: dict[UUID, User] = {}
        self.memberships: dict[tuple[UUID, UUID], Membership] = {}
        self.appeals: dict[UUID, PurchaseAppeal] = {}
        self.join_code_index: dict[str, UUID] = {}
        self.email_index: dict[str, UUID] = {}

        self._locks: dict[UUID, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._sequence = itertools.count(1)
        self.closed = False

        if seed:
            self._seed_data()

    def business_lock(self, business_id: UUID) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(business_id)
            if lock is None:
                lock = self._locks[business_id] = threading.RLock()
            return lock

    @property
    def registry_lock(self) -> threading.Lock:
        return self._registry_lock

    def next_sequence(self) -> int:
        with self._registry_lock:
            return next(self._sequence)

    def close(self) -> None:
        self.businesses.clear()
        self.users.clear()
        self.memberships.clear()
        self.appeals.clear()
        self.join_code_index.clear()
        self.email_index.clear()
        with self._registry_lock:
            self._locks.clear()
        self.closed = True
        logger.info("Loyalty storage closed")

    def _seed_data(self):
        business = Business(
            id=DEMO_BUSINESS_ID,
            name="Corner Coffee",
            description="Welcome to Corner Coffee's loyalty program!",
            join_code="CAFE01",
            owner_id="owner@cornercoffee.example",
            rewards=[
                Reward(
                    id=UUID("22222222-2222-2222-2222-222222222222"),
                    title="Free Latte", description="Any size latte on the house",
                    points_cost=100, category="Drinks",
                ),
                Reward(
                    id=UUID("33333333-3333-3333-3333-333333333333"),
                    title="Pastry of the Day", description="One pastry from the display case",
                    points_cost=60, category="Food",
                ),
            ],
        )
        self.businesses[business.id] = business
        self.join_code_index[business.join_code] = business.id

        user = User(id=DEMO_USER_ID, name="Jane Member", email="jane@example.com")
        self.users[user.id] = user
        self.email_index[user.email] = user.id

        self.memberships[(user.id, business.id)] = Membership(
            user_id=user.id,
            business_id=business.id,
            business_name=business.name,
        )
        logger.debug("Seeded demo business %s and user %s", business.id, user.id)
