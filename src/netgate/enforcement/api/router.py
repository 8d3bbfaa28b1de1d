"""FastAPI routers for access enforcement, M-Pesa and payment record endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...api.database import check_database_health
from ...api.exceptions import (
    CommandValidationError,
    DatabaseError,
    DuplicateConfirmation,
    EnforcementFailure,
    PaymentGatewayError,
)
from ..domain.ports import IConfirmationLedger, ISubscriberRepository
from ..use_cases import (
    AccessReconciler,
    InitiatePaymentUseCase,
    PaymentConfirmationHandler,
    PaymentNotPossible,
    RecordPaymentUseCase,
    SubscriberMutationHook,
    SubscriberNotFound,
)
from .dependencies import (
    get_confirmation_handler,
    get_container,
    get_ledger,
    get_mutation_hook,
    get_payment_initiation,
    get_reconciler,
    get_record_payment,
    get_subscriber_repo,
    get_sweeper,
    verify_api_key,
)
from .schemas import (
    MPESA_ACK,
    HookAcceptedResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentRecordResponse,
    ReconcileResponse,
    RecordPaymentRequest,
    RecordPaymentResponse,
    SubscriberSavedRequest,
    SubscriberSnapshotDTO,
    StkCallbackEnvelope,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/enforcement", tags=["Access Enforcement"])
billing_router = APIRouter(prefix="/api/billing", tags=["Billing"])


# ========== Mutation Hooks ==========


@router.post(
    "/hooks/subscriber-saved",
    response_model=HookAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def subscriber_saved(
    request: SubscriberSavedRequest,
    hook: SubscriberMutationHook = Depends(get_mutation_hook),
    _auth: bool = Depends(verify_api_key),
):
    """Reconcile a subscriber right after its record was created or updated.

    Enforcement is best effort; the response is 202 whatever the outcome.
    """
    result = await hook.on_saved(request.to_entity(), previous_address=request.previous_address)
    return HookAcceptedResponse(action=result.action.value if result else None)


@router.post(
    "/hooks/subscriber-deleted",
    response_model=HookAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def subscriber_deleted(
    request: SubscriberSnapshotDTO,
    hook: SubscriberMutationHook = Depends(get_mutation_hook),
    _auth: bool = Depends(verify_api_key),
):
    """Block a subscriber whose record was deleted."""
    result = await hook.on_deleted(request.to_entity())
    return HookAcceptedResponse(action=result.action.value if result else None)


# ========== Manual Reconcile ==========


@router.post("/subscribers/{subscriber_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_subscriber(
    subscriber_id: str,
    repo: ISubscriberRepository = Depends(get_subscriber_repo),
    reconciler: AccessReconciler = Depends(get_reconciler),
    _auth: bool = Depends(verify_api_key),
):
    """Reconcile one stored subscriber now and return what happened."""
    subscriber = await repo.get_subscriber(subscriber_id)
    if subscriber is None:
        raise HTTPException(status_code=404, detail=f"Subscriber '{subscriber_id}' not found")
    if not subscriber.has_address:
        raise HTTPException(status_code=409, detail="Subscriber has no network address")

    try:
        result = await reconciler.reconcile(subscriber)
    except CommandValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except EnforcementFailure as e:
        raise HTTPException(status_code=502, detail=e.message)

    return ReconcileResponse(**result.to_dict())


@router.get("/health")
async def enforcement_health():
    """Database health and the outcome of the last sweep."""
    container = get_container()
    database = await check_database_health(container.pool)
    sweeper = get_sweeper()
    sweep = sweeper.state.to_dict() if sweeper else None
    healthy = database.get("healthy", False) and (sweeper is None or sweeper.state.healthy)
    return {
        "status": "healthy" if healthy else "degraded",
        "database": database,
        "sweep": sweep,
        "payments_enabled": container.payment_initiation is not None,
    }


# ========== M-Pesa ==========


@billing_router.post("/mpesa/callback")
async def mpesa_callback(
    request: Request,
    handler: PaymentConfirmationHandler = Depends(get_confirmation_handler),
):
    """Receive an STK push result from Daraja.

    Always acknowledges with the fixed success body, including for malformed
    payloads, so the provider does not redeliver endlessly. Redeliveries
    that do arrive are absorbed by the handler.
    """
    try:
        payload = await request.json()
        confirmation = StkCallbackEnvelope.model_validate(payload).to_confirmation()
    except Exception as e:
        logger.warning(f"Malformed M-Pesa callback ignored: {e}")
        return MPESA_ACK

    result = await handler.handle(confirmation)
    logger.info(f"M-Pesa callback {result.request_id}: {result.outcome.value}")
    return MPESA_ACK


@billing_router.post("/mpesa/initiate", response_model=InitiatePaymentResponse)
async def initiate_payment(
    request: InitiatePaymentRequest,
    use_case: InitiatePaymentUseCase = Depends(get_payment_initiation),
    _auth: bool = Depends(verify_api_key),
):
    """Send an STK push for the subscriber's plan price."""
    try:
        payment = await use_case.execute(request.subscriber_id, request.phone_number)
    except SubscriberNotFound:
        raise HTTPException(status_code=404, detail=f"Subscriber '{request.subscriber_id}' not found")
    except (PaymentNotPossible, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PaymentGatewayError as e:
        logger.error(f"Payment initiation failed for {request.subscriber_id}: {e}")
        raise HTTPException(status_code=502, detail="Payment provider rejected the request")

    return InitiatePaymentResponse(**payment.to_dict())


# ========== Payment Records ==========


@billing_router.post(
    "/payments",
    response_model=RecordPaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    request: RecordPaymentRequest,
    use_case: RecordPaymentUseCase = Depends(get_record_payment),
    _auth: bool = Depends(verify_api_key),
):
    """Record a payment taken outside the STK flow and reactivate the subscriber."""
    try:
        applied = await use_case.execute(
            subscriber_id=request.subscriber_id,
            transaction_id=request.transaction_id,
            amount=request.amount,
            payment_method=request.method(),
        )
    except SubscriberNotFound:
        raise HTTPException(status_code=404, detail=f"Subscriber '{request.subscriber_id}' not found")
    except PaymentNotPossible as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicateConfirmation as e:
        raise HTTPException(status_code=409, detail=e.message)
    except DatabaseError as e:
        logger.error(f"Payment {request.transaction_id} recorded, window not extended: {e}")
        raise HTTPException(status_code=500, detail="Payment recorded but subscription window not updated")

    return RecordPaymentResponse(
        subscriber_id=request.subscriber_id,
        transaction_id=request.transaction_id,
        new_end=applied.new_end,
        action=applied.reconcile.action.value if applied.reconcile else None,
        detail=applied.detail,
    )


@billing_router.get("/payments/{transaction_id}", response_model=PaymentRecordResponse)
async def get_payment(
    transaction_id: str,
    ledger: IConfirmationLedger = Depends(get_ledger),
    _auth: bool = Depends(verify_api_key),
):
    """Look up a processed payment by its provider transaction id."""
    record = await ledger.get(transaction_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Payment '{transaction_id}' not found")
    return PaymentRecordResponse(**record.to_dict())
