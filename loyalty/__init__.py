"""
Loyalty Membership Ledger

This package provides:
- Business directory with join codes and reward catalogs
- One membership per (user, business) with an append-only purchase log
- Purchase appeals: pending → approved / rejected, resolved exactly once
- At-most-once crediting of approved appeals, with retry and reconciliation
- An HTTP API over the ledger (loyalty.api)
"""

from .errors import (
    AlreadyResolvedError,
    AppealNotFoundError,
    BusinessNotFoundError,
    InconsistentLedgerError,
    InsufficientPointsError,
    InvalidAmountError,
    InvalidPointsError,
    LoyaltyError,
    NotFoundError,
)
from .models import (
    AppealStatus,
    Business,
    BusinessMembers,
    Membership,
    Purchase,
    PurchaseAppeal,
    Reward,
    User,
)
from .service import LedgerService
from .storage import InMemoryStorage

__all__ = [
    "AppealStatus",
    "Business",
    "BusinessMembers",
    "Membership",
    "Purchase",
    "PurchaseAppeal",
    "Reward",
    "User",
    "LedgerService",
    "InMemoryStorage",
    "LoyaltyError",
    "NotFoundError",
    "BusinessNotFoundError",
    "AppealNotFoundError",
    "AlreadyResolvedError",
    "InvalidAmountError",
    "InvalidPointsError",
    "InsufficientPointsError",
    "InconsistentLedgerError",
]
