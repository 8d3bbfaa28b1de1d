"""Pydantic schemas for API request/response validation."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..domain.entities import PaymentConfirmation, PaymentMethod, Subscriber, SubscriberStatus

logger = logging.getLogger(__name__)


class SubscriberStatusDTO(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class SubscriberSnapshotDTO(BaseModel):
    """Subscriber record as committed by the persistence layer."""

    subscriber_id: str = Field(min_length=1, max_length=64)
    ip_address: Optional[str] = None
    subscription_start: datetime
    subscription_end: datetime
    status: SubscriberStatusDTO = SubscriberStatusDTO.PENDING
    service_plan_id: Optional[int] = None
    phone: Optional[str] = None
    name: Optional[str] = None

    def to_entity(self) -> Subscriber:
        return Subscriber(
            subscriber_id=self.subscriber_id,
            ip_address=self.ip_address,
            subscription_start=self.subscription_start,
            subscription_end=self.subscription_end,
            status=SubscriberStatus(self.status.value),
            service_plan_id=self.service_plan_id,
            phone=self.phone,
            name=self.name,
        )


class SubscriberSavedRequest(SubscriberSnapshotDTO):
    """Snapshot after a create or update."""

    # Address before the update, when it changed
    previous_address: Optional[str] = None


class HookAcceptedResponse(BaseModel):
    accepted: bool = True
    action: Optional[str] = None


class ReconcileResponse(BaseModel):
    """Result of a manual reconciliation."""

    subscriber_id: str
    address: Optional[str] = None
    action: str
    desired_blocked: bool
    observed: str
    status: Optional[str] = None
    status_error: Optional[str] = None
    reconciled_at: datetime


class InitiatePaymentRequest(BaseModel):
    subscriber_id: str = Field(min_length=1, max_length=64)
    phone_number: Optional[str] = Field(default=None, max_length=20)


class InitiatePaymentResponse(BaseModel):
    request_id: str
    subscriber_id: str
    amount: float
    plan_name: str
    expires_at: datetime


# ========== Manual Payments ==========


class PaymentMethodDTO(str, Enum):
    MPESA = "mpesa"
    CREDIT_CARD = "credit_card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


class RecordPaymentRequest(BaseModel):
    """A payment taken outside the STK flow, entered by an operator."""

    subscriber_id: str = Field(min_length=1, max_length=64)
    transaction_id: str = Field(min_length=1, max_length=64)
    amount: float = Field(gt=0)
    payment_method: PaymentMethodDTO

    def method(self) -> PaymentMethod:
        return PaymentMethod(self.payment_method.value)


class RecordPaymentResponse(BaseModel):
    subscriber_id: str
    transaction_id: str
    new_end: datetime
    action: Optional[str] = None
    detail: Optional[str] = None


class PaymentRecordResponse(BaseModel):
    transaction_id: str
    subscriber_id: str
    amount: Optional[float] = None
    payment_method: str
    request_id: Optional[str] = None
    confirmed_at: datetime


# ========== M-Pesa STK Callback ==========


class CallbackItemDTO(BaseModel):
    Name: str
    Value: Optional[Any] = None


class CallbackMetadataDTO(BaseModel):
    Item: list[CallbackItemDTO] = Field(default_factory=list)


class StkCallbackDTO(BaseModel):
    MerchantRequestID: Optional[str] = None
    CheckoutRequestID: str
    ResultCode: int
    ResultDesc: Optional[str] = None
    CallbackMetadata: Optional[CallbackMetadataDTO] = None

    def metadata_value(self, name: str) -> Optional[Any]:
        if self.CallbackMetadata is None:
            return None
        for item in self.CallbackMetadata.Item:
            if item.Name == name:
                return item.Value
        return None


class StkCallbackBodyDTO(BaseModel):
    stkCallback: StkCallbackDTO


def parse_amount(value: Any) -> Optional[float]:
    """Read a callback amount; None when it is missing or not a number.

    The amount is informational (the plan decides the extension), so an
    unreadable value must not cost the subscriber the payment.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        logger.warning(f"Unreadable amount in M-Pesa callback: {value!r}")
        return None


class StkCallbackEnvelope(BaseModel):
    """Body of the request Daraja POSTs to the callback URL."""

    Body: StkCallbackBodyDTO

    def to_confirmation(self) -> PaymentConfirmation:
        callback = self.Body.stkCallback
        receipt = callback.metadata_value("MpesaReceiptNumber")
        return PaymentConfirmation(
            request_id=callback.CheckoutRequestID,
            result_code=callback.ResultCode,
            provider_transaction_id=str(receipt) if receipt else None,
            amount=parse_amount(callback.metadata_value("Amount")),
            result_description=callback.ResultDesc,
        )


# Fixed acknowledgement; anything else makes Daraja redeliver
MPESA_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}
