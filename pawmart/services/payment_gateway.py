"""
Easebuzz payment gateway client

Request signing:
    sha512(key|txnid|amount|productinfo|firstname|email|udf1|...|udf10|salt)

Callback signing (reverse order):
    sha512(salt|status|udf10|...|udf1|email|firstname|productinfo|amount|txnid|key)

udf1..udf10 are echoed back unmodified by the gateway. They are covered
by the callback signature but still treated as untrusted input.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from pawmart.core.config import settings
from pawmart.core.exceptions import GatewayUnavailableError, PaymentInitiationError, PaymentVerificationError

logger = logging.getLogger(__name__)

UDF_FIELDS = tuple(f"udf{i}" for i in range(1, 11))
PRODUCT_INFO = "Order Payment"
DEFAULT_FIRSTNAME = "Customer"
DEFAULT_PHONE = "0000000000"

_ECHO_FIELDS = ("fullName", "city", "postalCode", "userId")


@dataclass
class GatewaySession:
    token: str
    payment_url: str


def encode_echo_payload(payload: Dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_echo_payload(value: Optional[str]) -> Dict[str, str]:
    """
    Decode and shape-check the address echo carried in udf2.

    Raises:
        PaymentVerificationError: if the value is not base64 JSON with the expected string fields
    """
    if not value:
        raise PaymentVerificationError("Missing checkout echo payload")
    try:
        payload = json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise PaymentVerificationError("Malformed checkout echo payload")

    if not isinstance(payload, dict):
        raise PaymentVerificationError("Malformed checkout echo payload")
    for field in _ECHO_FIELDS:
        if not isinstance(payload.get(field), str):
            raise PaymentVerificationError(
                "Malformed checkout echo payload",
                {"field": field}
            )
    return {field: payload[field] for field in _ECHO_FIELDS}


class EasebuzzGateway:

    def __init__(
        self,
        key: Optional[str] = None,
        salt: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.key = settings.EASEBUZZ_KEY if key is None else key
        self.salt = settings.EASEBUZZ_SALT if salt is None else salt
        self.base_url = (base_url or settings.EASEBUZZ_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        self._client = client

        if not self.key or not self.salt:
            logger.warning("Easebuzz key/salt not configured - payment initiation will be rejected by the gateway")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    @staticmethod
    def _sha512(parts) -> str:
        return hashlib.sha512("|".join(parts).encode("utf-8")).hexdigest()

    def request_hash(self, params: Mapping[str, str]) -> str:
        parts = [
            self.key,
            params.get("txnid", ""),
            params.get("amount", ""),
            params.get("productinfo", ""),
            params.get("firstname", ""),
            params.get("email", ""),
        ]
        parts.extend(params.get(field, "") for field in UDF_FIELDS)
        parts.append(self.salt)
        return self._sha512(parts)

    def callback_hash(self, data: Mapping[str, str]) -> str:
        parts = [self.salt, data.get("status", "")]
        parts.extend(data.get(field, "") for field in reversed(UDF_FIELDS))
        parts.extend([
            data.get("email", ""),
            data.get("firstname", ""),
            data.get("productinfo", ""),
            data.get("amount", ""),
            data.get("txnid", ""),
            self.key,
        ])
        return self._sha512(parts)

    def verify_callback(self, data: Mapping[str, str]) -> bool:
        supplied = data.get("hash") or ""
        return hmac.compare_digest(self.callback_hash(data).lower(), supplied.strip().lower())

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    def build_initiation_params(
        self,
        *,
        txnid: str,
        amount: str,
        firstname: Optional[str],
        email: str,
        phone: Optional[str],
        callback_url: str,
        udf: Mapping[str, str],
    ) -> Dict[str, str]:
        params = {
            "key": self.key,
            "txnid": txnid,
            "amount": amount,
            "productinfo": PRODUCT_INFO,
            "firstname": firstname or DEFAULT_FIRSTNAME,
            "email": email,
            "phone": phone or DEFAULT_PHONE,
            "surl": callback_url,
            "furl": callback_url,
        }
        for field in UDF_FIELDS:
            params[field] = udf.get(field, "")
        params["hash"] = self.request_hash(params)
        return params

    async def initiate(self, params: Mapping[str, str]) -> GatewaySession:
        """
        Open a hosted payment session.

        Raises:
            GatewayUnavailableError: timeout, transport error or 5xx
            PaymentInitiationError: the gateway answered with a failure
        """
        url = f"{self.base_url}/payment/initiateLink"
        txnid = params.get("txnid")
        try:
            response = await self._get_client().post(
                url,
                data=dict(params),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            logger.error(f"Easebuzz initiation timed out after {self.timeout}s for {txnid}")
            raise GatewayUnavailableError(details={"txnid": txnid, "reason": "timeout"})
        except httpx.HTTPError as e:
            logger.error(f"Easebuzz unreachable for {txnid}: {e}")
            raise GatewayUnavailableError(details={"txnid": txnid, "reason": "unreachable"})

        if response.status_code >= 500:
            logger.error(f"Easebuzz returned HTTP {response.status_code} for {txnid}")
            raise GatewayUnavailableError(details={"txnid": txnid, "http_status": response.status_code})

        try:
            body = response.json()
        except ValueError:
            raise PaymentInitiationError("Invalid response from payment gateway", {"txnid": txnid})

        if not isinstance(body, dict) or body.get("status") != 1 or not body.get("data"):
            reason = "Unknown gateway error"
            if isinstance(body, dict):
                reason = str(body.get("error_desc") or body.get("message") or body.get("data") or reason)
            logger.warning(f"Easebuzz rejected initiation for {txnid}: {reason}")
            raise PaymentInitiationError(reason, {"txnid": txnid})

        token = str(body["data"])
        return GatewaySession(token=token, payment_url=f"{self.base_url}/pay/{token}")
