"""M-Pesa adapter for the payment gateway port.

This adapter implements IPaymentGateway and wraps MpesaClient to start
STK push payments. The returned CheckoutRequestID is the identifier the
confirmation callback later carries.
"""

from typing import TYPE_CHECKING

from ..domain.ports import IPaymentGateway

if TYPE_CHECKING:
    from ...api.mpesa import MpesaClient


class MpesaPaymentGateway(IPaymentGateway):
    """Daraja STK push implementation of IPaymentGateway."""

    def __init__(self, client: "MpesaClient"):
        self.client = client

    async def request_payment(
        self,
        phone_number: str,
        amount: float,
        account_reference: str,
        description: str,
    ) -> str:
        response = await self.client.stk_push(
            phone_number=phone_number,
            amount=amount,
            account_reference=account_reference,
            description=description,
        )
        return response["CheckoutRequestID"]
