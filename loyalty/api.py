import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from offers import PersonalizedOffer

from .config import LoyaltySettings, get_settings
from .errors import (
    AlreadyResolvedError,
    DuplicateEmailError,
    DuplicateRewardError,
    InconsistentLedgerError,
    InsufficientPointsError,
    InvalidAmountError,
    LoyaltyError,
    NotFoundError,
)
from .models import (
    AppealResponse,
    ApproveAppealRequest,
    Business,
    BusinessMembers,
    CreateBusinessRequest,
    EnrollRequest,
    GrantPurchaseRequest,
    JoinRequest,
    JoinResult,
    Membership,
    OfferRequest,
    PurchaseAppeal,
    RedeemRequest,
    RegisterUserRequest,
    RejectAppealRequest,
    Reward,
    RewardRequest,
    SubmitAppealRequest,
    User,
    UserProfile,
)
from .service import LedgerService

logger = logging.getLogger(__name__)


def http_error(e: LoyaltyError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InvalidAmountError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, AlreadyResolvedError):
        # Benign: the admin view is stale and should be refreshed
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "status": e.status, "refresh": True},
        )
    if isinstance(e, (DuplicateRewardError, DuplicateEmailError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, InsufficientPointsError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, InconsistentLedgerError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def configure_logging(settings: LoyaltySettings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger("loyalty").setLevel(settings.log_level)
    logging.getLogger("offers").setLevel(settings.log_level)


def get_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def create_app(service: Optional[LedgerService] = None, settings: Optional[LoyaltySettings] = None) -> FastAPI:
    settings = settings or (service.settings if service else get_settings())
    service = service or LedgerService.from_settings(settings)

    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Loyalty ledger starting")
        yield
        app.state.ledger_service.close()

    app = FastAPI(
        title="Loyalty Ledger API",
        description="Membership ledger and purchase-appeal workflow for multi-business loyalty programs",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.ledger_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(_build_router())
    return app


def _build_router():
    router = APIRouter()

    @router.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "loyalty-ledger"}

    # Businesses

    @router.post("/businesses", response_model=Business, status_code=status.HTTP_201_CREATED, tags=["Businesses"])
    def create_business(request: CreateBusinessRequest, service: LedgerService = Depends(get_service)) -> Business:
        try:
            return service.create_business(request.name, request.admin_owner)
        except LoyaltyError as e:
            raise http_error(e)

    @router.get("/businesses/{business_id}", response_model=Business, tags=["Businesses"])
    def get_business(business_id: UUID, service: LedgerService = Depends(get_service)) -> Business:
        try:
            return service.get_business(business_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.post("/businesses/{business_id}/rewards", response_model=Business,
                 status_code=status.HTTP_201_CREATED, tags=["Businesses"])
    def add_reward(business_id: UUID, request: RewardRequest, service: LedgerService = Depends(get_service)) -> Business:
        data = request.model_dump(exclude_none=True)
        try:
            return service.add_reward(business_id, Reward(**data))
        except LoyaltyError as e:
            raise http_error(e)

    @router.put("/businesses/{business_id}/rewards/{reward_id}", response_model=Business, tags=["Businesses"])
    def update_reward(business_id: UUID, reward_id: UUID, request: RewardRequest,
                      service: LedgerService = Depends(get_service)) -> Business:
        data = request.model_dump(exclude={"id"})
        try:
            return service.update_reward(business_id, Reward(id=reward_id, **data))
        except LoyaltyError as e:
            raise http_error(e)

    @router.delete("/businesses/{business_id}/rewards/{reward_id}", response_model=Business, tags=["Businesses"])
    def delete_reward(business_id: UUID, reward_id: UUID, service: LedgerService = Depends(get_service)) -> Business:
        try:
            return service.delete_reward(business_id, reward_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.get("/businesses/{business_id}/members", response_model=BusinessMembers, tags=["Businesses"])
    def list_business_members(business_id: UUID, service: LedgerService = Depends(get_service)) -> BusinessMembers:
        try:
            return service.list_business_members(business_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.get("/businesses/{business_id}/appeals/pending", response_model=list[PurchaseAppeal], tags=["Appeals"])
    def list_pending_appeals(business_id: UUID, service: LedgerService = Depends(get_service)) -> list[PurchaseAppeal]:
        return service.list_pending_appeals(business_id)

    # Users

    @router.post("/users", response_model=User, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def register_user(request: RegisterUserRequest, service: LedgerService = Depends(get_service)) -> User:
        try:
            return service.register_user(request.name, request.email, request.default_business_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.get("/users/{user_id}", response_model=UserProfile, tags=["Users"])
    def get_user_profile(user_id: UUID, service: LedgerService = Depends(get_service)) -> UserProfile:
        try:
            return service.get_user_profile(user_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.get("/users/{user_id}/memberships", response_model=list[Membership], tags=["Users"])
    def list_memberships(user_id: UUID, service: LedgerService = Depends(get_service)) -> list[Membership]:
        return service.list_memberships(user_id)

    @router.post("/users/{user_id}/join", response_model=JoinResult, tags=["Users"])
    def join_business(user_id: UUID, request: JoinRequest, service: LedgerService = Depends(get_service)) -> JoinResult:
        try:
            return service.join_by_code(user_id, request.join_code)
        except LoyaltyError as e:
            raise http_error(e)

    @router.post("/users/{user_id}/redemptions", response_model=Membership, tags=["Users"])
    def redeem_reward(user_id: UUID, request: RedeemRequest, service: LedgerService = Depends(get_service)) -> Membership:
        try:
            return service.redeem_reward(user_id, request.business_id, request.reward_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.get("/users/{user_id}/appeals", response_model=list[PurchaseAppeal], tags=["Users"])
    def list_user_appeals(user_id: UUID, service: LedgerService = Depends(get_service)) -> list[PurchaseAppeal]:
        return service.list_user_appeals(user_id)

    # Memberships

    @router.post("/memberships", response_model=Membership, tags=["Memberships"])
    def enroll_membership(request: EnrollRequest, service: LedgerService = Depends(get_service)) -> Membership:
        try:
            return service.enroll_membership(request.user_id, request.business_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.get("/memberships/{user_id}/{business_id}", response_model=Membership, tags=["Memberships"])
    def get_membership(user_id: UUID, business_id: UUID, service: LedgerService = Depends(get_service)) -> Membership:
        membership = service.get_membership(user_id, business_id)
        if membership is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"User {user_id} is not a member of business {business_id}",
            )
        return membership

    @router.post("/purchases", response_model=Membership, status_code=status.HTTP_201_CREATED, tags=["Memberships"])
    def grant_purchase(request: GrantPurchaseRequest, service: LedgerService = Depends(get_service)) -> Membership:
        try:
            return service.grant_purchase(
                request.user_id, request.business_id, request.item, request.amount, request.points_earned,
            )
        except LoyaltyError as e:
            raise http_error(e)

    # Appeals

    @router.post("/appeals", response_model=PurchaseAppeal, status_code=status.HTTP_201_CREATED, tags=["Appeals"])
    def submit_appeal(request: SubmitAppealRequest, service: LedgerService = Depends(get_service)) -> PurchaseAppeal:
        try:
            return service.submit_appeal(
                request.user_id, request.business_id, request.item,
                request.amount, request.points_expected, request.reason,
            )
        except LoyaltyError as e:
            raise http_error(e)

    @router.get("/appeals/{appeal_id}", response_model=PurchaseAppeal, tags=["Appeals"])
    def get_appeal(appeal_id: UUID, service: LedgerService = Depends(get_service)) -> PurchaseAppeal:
        try:
            return service.get_appeal(appeal_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.post("/appeals/reconcile", response_model=list[PurchaseAppeal], tags=["Appeals"])
    def reconcile_appeals(business_id: Optional[UUID] = None,
                          service: LedgerService = Depends(get_service)) -> list[PurchaseAppeal]:
        try:
            return service.reconcile_appeals(business_id)
        except LoyaltyError as e:
            raise http_error(e)

    @router.post("/appeals/{appeal_id}/approve", response_model=AppealResponse, tags=["Appeals"])
    def approve_appeal(appeal_id: UUID, request: Optional[ApproveAppealRequest] = None,
                       service: LedgerService = Depends(get_service)) -> AppealResponse:
        reviewer = request.reviewer if request else None
        try:
            appeal, membership = service.approve_appeal(appeal_id, reviewer)
        except LoyaltyError as e:
            raise http_error(e)
        return AppealResponse(
            appeal=appeal,
            membership=membership,
            message=f"Appeal approved, {appeal.points_expected} points credited",
        )

    @router.post("/appeals/{appeal_id}/reject", response_model=AppealResponse, tags=["Appeals"])
    def reject_appeal(appeal_id: UUID, request: RejectAppealRequest,
                      service: LedgerService = Depends(get_service)) -> AppealResponse:
        try:
            appeal = service.reject_appeal(appeal_id, request.reason, request.reviewer)
        except LoyaltyError as e:
            raise http_error(e)
        return AppealResponse(appeal=appeal, message="Appeal rejected")

    # Offers

    @router.post("/offers", response_model=PersonalizedOffer, tags=["Offers"])
    def generate_offer(request: OfferRequest, service: LedgerService = Depends(get_service)) -> PersonalizedOffer:
        return service.generate_offer(request.user_id, request.business_id, request.preferences)

    return router


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
