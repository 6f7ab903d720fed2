from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol
from urllib.parse import quote

import httpx

from ..core.errors import PaymentProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentInitialization:
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    status: str
    amount: int  # minor units
    metadata: dict[str, Any] = field(default_factory=dict)
    customer_email: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class PaymentProvider(Protocol):
    def initialize(
        self,
        *,
        amount: int,
        email: str,
        reference: str,
        metadata: dict[str, Any],
        callback_url: Optional[str] = None,
    ) -> PaymentInitialization: ...

    def verify(self, reference: str) -> PaymentVerification: ...

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool: ...

    def close(self) -> None: ...


def sign_payload(secret_key: str, raw_body: bytes) -> str:
    return hmac.new(secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class PaystackClient:
    """Minimal Paystack REST client: initialize, verify and webhook signatures."""

    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = "https://api.paystack.co",
        currency: str = "GHS",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not secret_key:
            logger.warning("paystack.secret_missing")
        self.secret_key = secret_key
        self.currency = currency
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {secret_key}"},
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.secret_key:
            raise PaymentProviderError("Paystack secret key missing")
        try:
            resp = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"Paystack unreachable: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.is_error or not body.get("status"):
            raise PaymentProviderError(
                body.get("message") or f"Paystack {path} failed: {resp.status_code}"
            )
        return body.get("data") or {}

    def initialize(
        self,
        *,
        amount: int,
        email: str,
        reference: str,
        metadata: dict[str, Any],
        callback_url: Optional[str] = None,
    ) -> PaymentInitialization:
        payload: dict[str, Any] = {
            "amount": amount,
            "currency": self.currency,
            "email": email,
            "reference": reference,
            "metadata": metadata,
        }
        if callback_url:
            payload["callback_url"] = callback_url
        data = self._request("POST", "/transaction/initialize", json=payload)
        logger.info("paystack.initialized", extra={"reference": reference, "amount": amount})
        return PaymentInitialization(
            authorization_url=data["authorization_url"],
            reference=data.get("reference", reference),
            access_code=data.get("access_code"),
        )

    def verify(self, reference: str) -> PaymentVerification:
        data = self._request("GET", f"/transaction/verify/{quote(reference, safe='')}")
        metadata = data.get("metadata")
        customer = data.get("customer")
        if not isinstance(customer, dict):
            customer = {}
        return PaymentVerification(
            reference=data.get("reference", reference),
            status=data.get("status", ""),
            amount=int(data.get("amount") or 0),
            metadata=metadata if isinstance(metadata, dict) else {},
            customer_email=customer.get("email"),
        )

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not self.secret_key or not raw_body or not signature:
            return False
        return hmac.compare_digest(sign_payload(self.secret_key, raw_body), signature)

    def close(self) -> None:
        self._http.close()
