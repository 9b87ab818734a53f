"""Checkout API: order creation, status polling, pricing and purchase history."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.common.code import ErrCodeError, handle_auth_error
from billing.core.payment.service import PaymentService
from billing.infra.database import get_session as get_db_session
from billing.middleware.auth import get_current_user, get_optional_user
from billing.schemas.payment import (
    CheckoutRequest,
    CheckoutResponse,
    CourseAccessItem,
    CoursePricingResponse,
    PaymentHistoryItem,
    PaymentStatusResponse,
    ProviderInfo,
    PurchasePricingItem,
    RoadmapCreditsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


@router.get("/providers", response_model=list[ProviderInfo])
async def list_providers(db: AsyncSession = Depends(get_db_session)) -> list[ProviderInfo]:
    """Payment providers and whether each one is configured in this deployment."""
    return [ProviderInfo(**item) for item in PaymentService(db).get_available_providers()]


@router.get("/pricing", response_model=list[PurchasePricingItem])
async def get_purchase_pricing(db: AsyncSession = Depends(get_db_session)) -> list[PurchasePricingItem]:
    return [PurchasePricingItem(**item) for item in PaymentService(db).get_purchase_pricing()]


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_checkout(
    body: CheckoutRequest,
    current_user: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> CheckoutResponse:
    """Open a pending order and return the provider's hosted payment URL."""
    logger.info(
        f"User {current_user} creating checkout: type={body.order_type}, provider={body.provider}, "
        f"plan={body.plan_id}, purchase={body.purchase_type}, course={body.course_id}"
    )

    try:
        service = PaymentService(db)
        result = await service.create_checkout(
            user_id=current_user,
            order_type=body.order_type,
            provider=body.provider,
            plan_id=body.plan_id,
            purchase_type=body.purchase_type,
            course_id=body.course_id,
            quantity=body.quantity,
            return_url=body.return_url,
        )
        await db.commit()

        return CheckoutResponse(**result)

    except ErrCodeError as e:
        await db.rollback()
        raise handle_auth_error(e)
    except Exception as e:
        await db.rollback()
        logger.error(f"Checkout failed for user {current_user}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout",
        )


@router.get("/status/{order_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    order_id: str,
    current_user: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> PaymentStatusResponse:
    try:
        view = await PaymentService(db).get_payment_status(order_id)
        return PaymentStatusResponse(status=view.status, order_type=view.order_type, amount=view.amount)
    except ErrCodeError as e:
        raise handle_auth_error(e)


@router.get("/history", response_model=list[PaymentHistoryItem])
async def get_payment_history(
    current_user: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[PaymentHistoryItem]:
    history = await PaymentService(db).get_payment_history(current_user)
    return [PaymentHistoryItem(**item) for item in history]


@router.get("/courses/pricing", response_model=list[CoursePricingResponse])
async def get_all_courses_pricing(
    current_user: str | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[CoursePricingResponse]:
    """Lifetime access prices for every course that has an active course plan."""
    pricing = await PaymentService(db).get_all_courses_pricing(current_user)
    return [CoursePricingResponse(**item) for item in pricing]


@router.get("/courses/access", response_model=list[CourseAccessItem])
async def get_user_course_accesses(
    current_user: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[CourseAccessItem]:
    accesses = await PaymentService(db).get_user_course_accesses(current_user)
    return [CourseAccessItem(**item) for item in accesses]


@router.get("/courses/{course_id}/pricing", response_model=CoursePricingResponse)
async def get_course_pricing(
    course_id: str,
    current_user: str | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
) -> CoursePricingResponse:
    try:
        return CoursePricingResponse(**await PaymentService(db).get_course_pricing(course_id, current_user))
    except ErrCodeError as e:
        raise handle_auth_error(e)


@router.get("/roadmap-credits", response_model=RoadmapCreditsResponse)
async def get_roadmap_credits(
    current_user: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> RoadmapCreditsResponse:
    return RoadmapCreditsResponse(**await PaymentService(db).get_roadmap_credits(current_user))
