from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppealStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Reward(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    title: str
    description: str = ""
    points_cost: int
    category: str = ""


class Business(BaseModel):
    id: UUID
    name: str
    description: str = ""
    join_code: str
    owner_id: str
    rewards: list[Reward] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def find_reward(self, reward_id: UUID) -> Optional[Reward]:
        for reward in self.rewards:
            if reward.id == reward_id:
                return reward
        return None


class User(BaseModel):
    id: UUID
    name: str
    email: str
    created_at: datetime = Field(default_factory=utcnow)


class Purchase(BaseModel):
    """
    One entry of a membership's purchase log.

    `status` is only set for purchases created by the appeal workflow;
    purchases without a status (direct grants, welcome bonuses,
    redemptions) count toward the balance immediately.
    """

    id: UUID = Field(default_factory=uuid4)
    item: str
    amount: Decimal = Decimal("0")
    date: datetime = Field(default_factory=utcnow)
    points_earned: int
    status: Optional[AppealStatus] = None
    appeal_id: Optional[UUID] = None

    model_config = ConfigDict(frozen=True)

    @property
    def counts_toward_balance(self) -> bool:
        return self.status is None or self.status == AppealStatus.APPROVED


class Membership(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    business_id: UUID
    business_name: str = ""
    points_balance: int = 0
    purchases: list[Purchase] = Field(default_factory=list)
    enrolled_at: datetime = Field(default_factory=utcnow)

    def has_purchase(self, purchase_id: UUID) -> bool:
        return any(p.id == purchase_id for p in self.purchases)

    def ledger_total(self) -> int:
        return sum(p.points_earned for p in self.purchases if p.counts_toward_balance)


class PurchaseAppeal(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    business_id: UUID
    item: str
    amount: Decimal
    points_expected: int
    appeal_reason: str = ""
    status: AppealStatus = AppealStatus.PENDING
    submitted_at: datetime = Field(default_factory=utcnow)
    sequence: int = 0
    reviewed_at: Optional[datetime] = None
    admin_reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    def is_pending(self) -> bool:
        return self.status == AppealStatus.PENDING


class UserProfile(BaseModel):
    user: User
    memberships: list[Membership]


class BusinessMembers(BaseModel):
    """Admin overview of one business: its members and their totals."""

    business_id: UUID
    members: list[Membership]
    total_members: int
    total_points: int
    total_purchases: int


# Request / response payloads


class CreateBusinessRequest(BaseModel):
    name: str
    admin_owner: str

    model_config = ConfigDict(json_schema_extra={
        "example": {"name": "Corner Coffee", "admin_owner": "owner@cornercoffee.example"}
    })


class RewardRequest(BaseModel):
    id: Optional[UUID] = None
    title: str
    description: str = ""
    points_cost: int
    category: str = ""


class RegisterUserRequest(BaseModel):
    name: str
    email: str
    default_business_id: Optional[UUID] = None


class EnrollRequest(BaseModel):
    user_id: UUID
    business_id: UUID


class JoinRequest(BaseModel):
    join_code: str


class RedeemRequest(BaseModel):
    business_id: UUID
    reward_id: UUID


class GrantPurchaseRequest(BaseModel):
    user_id: UUID
    business_id: UUID
    item: str
    amount: Decimal = Decimal("0")
    points_earned: int


class SubmitAppealRequest(BaseModel):
    user_id: UUID
    business_id: UUID
    item: str
    amount: Decimal
    points_expected: int
    reason: str = ""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "550e8400-e29b-41d4-a716-446655440000",
            "business_id": "11111111-1111-1111-1111-111111111111",
            "item": "Latte",
            "amount": 4.50,
            "points_expected": 20,
            "reason": "Lost my receipt at the counter",
        }
    })


class ApproveAppealRequest(BaseModel):
    reviewer: Optional[str] = None


class RejectAppealRequest(BaseModel):
    reason: str = ""
    reviewer: Optional[str] = None


class OfferRequest(BaseModel):
    user_id: UUID
    business_id: Optional[UUID] = None
    preferences: str = ""


class AppealResponse(BaseModel):
    appeal: PurchaseAppeal
    membership: Optional[Membership] = None
    message: str


class JoinResult(BaseModel):
    membership: Membership
    joined: bool
    message: str
