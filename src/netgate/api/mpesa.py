#!/usr/bin/env python3
"""M-Pesa Daraja API client (STK push).

Features:
    - OAuth2 client-credentials token, cached until shortly before expiry
    - STK push initiation (customer pays from their phone)
    - STK push status query
    - Phone number normalisation to the 254XXXXXXXXX form

Environment Variables:
    MPESA_API_URL: Daraja base URL (sandbox or production)
    MPESA_CONSUMER_KEY, MPESA_CONSUMER_SECRET: OAuth credentials
    MPESA_SHORTCODE, MPESA_PASSKEY: Paybill shortcode and its passkey
    MPESA_CALLBACK_URL: Public URL of /api/billing/mpesa/callback

Example:
    async with MpesaClient(MpesaConfig.from_env()) as client:
        response = await client.stk_push(
            phone_number="0712345678",
            amount=1500,
            account_reference="SUB-001",
            description="Payment for Home 10Mbps subscription",
        )
        checkout_request_id = response["CheckoutRequestID"]
"""
import asyncio
import base64
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp
from dotenv import load_dotenv

from .exceptions import ConfigurationError, PaymentGatewayError

load_dotenv()

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_BUFFER_SECONDS = 60


def normalize_phone_number(phone_number: str) -> str:
    """Convert a Kenyan phone number to the 2547XXXXXXXX form Daraja expects.

    >>> normalize_phone_number("0712345678")
    '254712345678'
    >>> normalize_phone_number("+254712345678")
    '254712345678'
    """
    digits = phone_number.strip().lstrip("+").replace(" ", "")
    if not digits.isdigit():
        raise ValueError(f"Invalid phone number: {phone_number!r}")
    if digits.startswith("0"):
        return f"254{digits[1:]}"
    if not digits.startswith("254"):
        return f"254{digits}"
    return digits


def stk_timestamp(now: Optional[datetime] = None) -> str:
    """Daraja request timestamp, YYYYMMDDHHMMSS."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """base64(shortcode + passkey + timestamp)."""
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


@dataclass
class MpesaConfig:
    api_url: str
    consumer_key: str
    consumer_secret: str
    shortcode: str
    passkey: str
    callback_url: str
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "MpesaConfig":
        values = {
            "MPESA_API_URL": os.getenv("MPESA_API_URL"),
            "MPESA_CONSUMER_KEY": os.getenv("MPESA_CONSUMER_KEY"),
            "MPESA_CONSUMER_SECRET": os.getenv("MPESA_CONSUMER_SECRET"),
            "MPESA_SHORTCODE": os.getenv("MPESA_SHORTCODE"),
            "MPESA_PASSKEY": os.getenv("MPESA_PASSKEY"),
            "MPESA_CALLBACK_URL": os.getenv("MPESA_CALLBACK_URL"),
        }
        missing = [key for key, value in values.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing_keys=missing,
            )
        return cls(
            api_url=values["MPESA_API_URL"].rstrip("/"),
            consumer_key=values["MPESA_CONSUMER_KEY"],
            consumer_secret=values["MPESA_CONSUMER_SECRET"],
            shortcode=values["MPESA_SHORTCODE"],
            passkey=values["MPESA_PASSKEY"],
            callback_url=values["MPESA_CALLBACK_URL"],
        )


class MpesaClient:
    """Async client for the Daraja STK push endpoints.

    Use as an async context manager, or call close() when done.
    """

    def __init__(self, config: MpesaConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    async def __aenter__(self) -> "MpesaClient":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get_token(self) -> str:
        """Return a valid access token, fetching a new one when needed."""
        if self._token and time.time() < self._token_expires_at:
            return self._token

        async with self._token_lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token

            auth = aiohttp.BasicAuth(self.config.consumer_key, self.config.consumer_secret)
            data = await self._request("GET", TOKEN_PATH, auth=auth)
            token = data.get("access_token")
            if not token:
                raise PaymentGatewayError(
                    "Token response missing access_token",
                    details={"response_keys": list(data.keys())},
                )
            expires_in = int(data.get("expires_in", 3599))
            self._token = token
            self._token_expires_at = time.time() + max(0, expires_in - TOKEN_EXPIRY_BUFFER_SECONDS)
            return token

    async def stk_push(
        self,
        phone_number: str,
        amount: float,
        account_reference: str,
        description: str,
    ) -> dict[str, Any]:
        """Initiate an STK push to the customer's phone.

        Returns:
            Daraja response (contains CheckoutRequestID)
        """
        phone = normalize_phone_number(phone_number)
        timestamp = stk_timestamp()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": stk_password(self.config.shortcode, self.config.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(round(amount)),
            "PartyA": phone,
            "PartyB": self.config.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description[:64],
        }
        token = await self.get_token()
        data = await self._request(
            "POST",
            STK_PUSH_PATH,
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        if not data.get("CheckoutRequestID"):
            raise PaymentGatewayError(
                f"STK push rejected: {data.get('errorMessage') or data.get('ResponseDescription')}",
                details={"response_code": data.get("ResponseCode")},
            )
        logger.info(
            f"STK push initiated for {account_reference} "
            f"(checkout_request_id={data['CheckoutRequestID']})"
        )
        return data

    async def query_stk_status(self, checkout_request_id: str) -> dict[str, Any]:
        """Ask Daraja for the status of an earlier STK push."""
        timestamp = stk_timestamp()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": stk_password(self.config.shortcode, self.config.passkey, timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        token = await self.get_token()
        return await self._request(
            "POST",
            STK_QUERY_PATH,
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        session = self._ensure_session()
        url = f"{self.config.api_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise PaymentGatewayError(
                        f"M-Pesa API returned HTTP {response.status}",
                        status_code=response.status,
                        details={"path": path, "response": body[:200]},
                    )
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise PaymentGatewayError(
                "M-Pesa API request timed out",
                details={"path": path},
                cause=e,
            )
        except aiohttp.ClientError as e:
            raise PaymentGatewayError(
                f"M-Pesa API request failed: {e}",
                details={"path": path},
                cause=e,
            )


__all__ = [
    "MpesaClient",
    "MpesaConfig",
    "normalize_phone_number",
    "stk_password",
    "stk_timestamp",
]
