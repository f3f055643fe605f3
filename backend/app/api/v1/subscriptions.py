"""Subscription API endpoints — checkout sync, live reads, history and saved cards."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_active_user, get_db
from app.billing.card_operations import (
    attach_card,
    create_card_setup_intent,
    delete_card,
    set_default_card,
)
from app.billing.checkout_sync import sync_subscription_from_checkout_session
from app.billing.refresh import build_subscription_view
from app.billing.results import BillingResult
from app.models.user import User
from app.schemas.billing import (
    PAYMENT_METHOD_ID_PATTERN,
    CheckoutSessionSyncRequest,
    PaginationMeta,
    PaymentMethodRequest,
    SetupIntentResponse,
    SubscriptionHistoryItem,
    SubscriptionListResponse,
    SubscriptionResponse,
    TransactionListResponse,
    TransactionResponse,
)
from app.services.subscription_service import (
    get_current_subscription,
    get_subscription_for_user,
    list_subscriptions,
    list_transactions,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


def _unwrap(result: BillingResult):
    """Return the result value, or raise the HTTP error its status maps to."""
    if not result.ok:
        raise HTTPException(
            status_code=result.http_status,
            detail={"code": result.status, "message": result.detail},
        )
    return result.value


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "not_found", "message": "Subscription not found"},
    )


@router.post("/sync/checkout-session", response_model=SubscriptionResponse)
async def sync_checkout_session(
    body: CheckoutSessionSyncRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Reconcile a completed Stripe Checkout session into the current subscription."""
    subscription = _unwrap(await sync_subscription_from_checkout_session(db, current_user, body.session_id))
    return await build_subscription_view(db, subscription)


@router.get("/me/current", response_model=SubscriptionResponse)
async def get_my_current_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Current subscription, refreshed live from Stripe."""
    subscription = await get_current_subscription(db, current_user.id)
    if subscription is None:
        raise _not_found()
    return await build_subscription_view(db, subscription)


@router.get("/me/history", response_model=SubscriptionListResponse)
async def get_my_subscription_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionListResponse:
    """All subscriptions of the caller, newest first."""
    items, total = await list_subscriptions(db, current_user.id, page, limit)
    return SubscriptionListResponse(
        items=[SubscriptionHistoryItem.model_validate(s) for s in items],
        meta=PaginationMeta.build(page, limit, total),
    )


@router.get("/me/transactions", response_model=TransactionListResponse)
async def get_my_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> TransactionListResponse:
    """Invoice transactions across all of the caller's subscriptions."""
    items, total = await list_transactions(db, current_user.id, page, limit)
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in items],
        meta=PaginationMeta.build(page, limit, total),
    )


@router.post("/me/current/cards/setup-intent", response_model=SetupIntentResponse)
async def create_setup_intent(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SetupIntentResponse:
    """Start adding a card: returns the SetupIntent client secret for Stripe.js."""
    client_secret = _unwrap(await create_card_setup_intent(db, current_user))
    return SetupIntentResponse(client_secret=client_secret)


@router.post("/me/current/cards", response_model=SubscriptionResponse)
async def add_card(
    body: PaymentMethodRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Attach a confirmed card and make it the default."""
    subscription = _unwrap(await attach_card(db, current_user, body.payment_method_id))
    return await build_subscription_view(db, subscription)


@router.put("/me/current/cards/default", response_model=SubscriptionResponse)
async def update_default_card(
    body: PaymentMethodRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Make a saved card the default payment method."""
    subscription = _unwrap(await set_default_card(db, current_user, body.payment_method_id))
    return await build_subscription_view(db, subscription)


@router.delete("/me/current/cards/{payment_method_id}", response_model=SubscriptionResponse)
async def remove_card(
    payment_method_id: str = Path(pattern=PAYMENT_METHOD_ID_PATTERN),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Detach a saved card; the last remaining card cannot be removed."""
    subscription = _unwrap(await delete_card(db, current_user, payment_method_id))
    return await build_subscription_view(db, subscription)


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """One of the caller's subscriptions by id, refreshed live from Stripe."""
    subscription = await get_subscription_for_user(db, current_user.id, subscription_id)
    if subscription is None:
        raise _not_found()
    return await build_subscription_view(db, subscription)
