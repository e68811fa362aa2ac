import logging
import secrets
import string
from typing import Optional
from uuid import UUID, uuid4

from .errors import (
    BusinessNotFoundError,
    DuplicateRewardError,
    InvalidPointsError,
    LoyaltyError,
    RewardNotFoundError,
)
from .models import Business, Reward
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_join_code(length: int = 6) -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(length))


class BusinessDirectory:
    """Business identity, join codes and reward catalogs."""

    def __init__(self, storage: InMemoryStorage, join_code_length: int = 6, join_code_attempts: int = 10):
        self.storage = storage
        self.join_code_length = join_code_length
        self.join_code_attempts = join_code_attempts

    def create_business(self, name: str, admin_owner: str) -> Business:
        with self.storage.registry_lock:
            join_code = self._unique_join_code()
            business = Business(
                id=uuid4(),
                name=name,
                description=f"Welcome to {name}'s loyalty program!",
                join_code=join_code,
                owner_id=admin_owner,
            )
            self.storage.businesses[business.id] = business
            self.storage.join_code_index[join_code] = business.id

        logger.info("Created business %s (%s) with join code %s", business.id, name, join_code)
        return business.model_copy(deep=True)

    def get_business(self, business_id: UUID) -> Business:
        return self._get(business_id).model_copy(deep=True)

    def exists(self, business_id: UUID) -> bool:
        return business_id in self.storage.businesses

    def find_by_join_code(self, code: str) -> Optional[Business]:
        business_id = self.storage.join_code_index.get(code.strip().upper())
        if business_id is None:
            return None
        return self.get_business(business_id)

    def list_businesses(self) -> list[Business]:
        businesses = sorted(self.storage.businesses.values(), key=lambda b: b.created_at)
        return [b.model_copy(deep=True) for b in businesses]

    def get_reward(self, business_id: UUID, reward_id: UUID) -> Reward:
        reward = self._get(business_id).find_reward(reward_id)
        if reward is None:
            raise RewardNotFoundError(f"Reward {reward_id} not found in business {business_id}")
        return reward.model_copy()

    def add_reward(self, business_id: UUID, reward: Reward) -> Business:
        self._validate_reward(reward)
        with self.storage.business_lock(business_id):
            business = self._get(business_id)
            if business.find_reward(reward.id) is not None:
                raise DuplicateRewardError(f"Reward {reward.id} already exists in business {business_id}")
            business.rewards.append(reward.model_copy())
            logger.info("Added reward %s to business %s", reward.id, business_id)
            return business.model_copy(deep=True)

    def update_reward(self, business_id: UUID, reward: Reward) -> Business:
        self._validate_reward(reward)
        with self.storage.business_lock(business_id):
            business = self._get(business_id)
            for index, existing in enumerate(business.rewards):
                if existing.id == reward.id:
                    business.rewards[index] = reward.model_copy()
                    return business.model_copy(deep=True)
            raise RewardNotFoundError(f"Reward {reward.id} not found in business {business_id}")

    def delete_reward(self, business_id: UUID, reward_id: UUID) -> Business:
        with self.storage.business_lock(business_id):
            business = self._get(business_id)
            remaining = [r for r in business.rewards if r.id != reward_id]
            if len(remaining) == len(business.rewards):
                raise RewardNotFoundError(f"Reward {reward_id} not found in business {business_id}")
            business.rewards = remaining
            logger.info("Deleted reward %s from business %s", reward_id, business_id)
            return business.model_copy(deep=True)

    def _get(self, business_id: UUID) -> Business:
        business = self.storage.businesses.get(business_id)
        if business is None:
            raise BusinessNotFoundError(f"Business {business_id} not found")
        return business

    def _unique_join_code(self) -> str:
        # Caller holds the registry lock
        for _ in range(self.join_code_attempts):
            code = generate_join_code(self.join_code_length)
            if code not in self.storage.join_code_index:
                return code
        raise LoyaltyError("Failed to generate a unique join code")

    @staticmethod
    def _validate_reward(reward: Reward) -> None:
        if reward.points_cost <= 0:
            raise InvalidPointsError(f"Reward points cost must be positive, got {reward.points_cost}")
