"""
Payment hub client.

Accepted agreements are registered with the payment hub by posting a
payment request message. Requests are authorised with a shared access
signature (SAS) token signed with the configured key.
"""

from datetime import date
from typing import Any, Dict, List, Optional
from urllib.parse import quote
import base64
import hashlib
import hmac
import json
import logging
import time

import httpx

from agreements.errors import PaymentHubError, UpstreamServiceError
from agreements.money import pence_to_pounds
from agreements.retention import to_date
from config import Settings

logger = logging.getLogger(__name__)

SOURCE_SYSTEM = "FRPS"
CURRENCY = "GBP"
SCHEDULE = "T4"
DELIVERY_BODY = "RP00"


def generate_sas_token(uri: str, key_name: str, key: str, ttl_seconds: int, now: Optional[float] = None) -> str:
    """Shared access signature for `uri`, valid for ttl_seconds from now"""
    encoded = quote(uri, safe="")
    expiry = int(round(now if now is not None else time.time())) + ttl_seconds
    to_sign = f"{encoded}\n{expiry}".encode("utf-8")
    digest = hmac.new(key.encode("utf-8"), to_sign, hashlib.sha256).digest()
    signature = quote(base64.b64encode(digest).decode("utf-8"), safe="")
    return f"SharedAccessSignature sr={encoded}&sig={signature}&se={expiry}&skn={key_name}"


def _invoice_lines(payment: Dict[str, Any], marketing_year: Optional[int]) -> List[Dict[str, Any]]:
    lines = []
    items = list((payment.get("parcelItems") or {}).values()) + list((payment.get("agreementLevelItems") or {}).values())
    for item in items:
        lines.append({
            "value": float(pence_to_pounds(int(item.get("annualPaymentPence") or 0))),
            "description": f"{item.get('code')} - {item.get('description') or ''}".strip(" -"),
            "schemeCode": item.get("code"),
            "deliveryBody": DELIVERY_BODY,
            "marketingYear": marketing_year,
        })
    return lines


def build_payment_request(snapshot: Dict[str, Any], invoice: Dict[str, Any]) -> Dict[str, Any]:
    """Payment hub message for an accepted agreement snapshot and its invoice"""
    payment = snapshot.get("payment") or {}
    identifiers = snapshot.get("identifiers") or {}
    instalments = payment.get("payments") or []
    due_date = instalments[0].get("paymentDate") if instalments else None

    marketing_year = None
    if payment.get("agreementStartDate"):
        marketing_year = to_date(payment["agreementStartDate"]).year

    return {
        "sourceSystem": SOURCE_SYSTEM,
        "frn": snapshot.get("frn") or identifiers.get("frn"),
        "sbi": snapshot.get("sbi") or identifiers.get("sbi"),
        "marketingYear": marketing_year,
        "paymentRequestNumber": snapshot.get("version") or 1,
        "correlationId": snapshot.get("correlationId"),
        "invoiceNumber": invoice["invoiceNumber"],
        "claimId": invoice["claimId"],
        "agreementNumber": snapshot.get("agreementNumber"),
        "currency": CURRENCY,
        "schedule": SCHEDULE,
        "dueDate": to_date(due_date).strftime("%d/%m/%Y") if due_date else date.today().strftime("%d/%m/%Y"),
        "value": float(pence_to_pounds(int(payment.get("agreementTotalPence") or 0))),
        "invoiceLines": _invoice_lines(payment, marketing_year),
    }


class PaymentHubClient:
    """
    Sends payment requests to the payment hub.

    When the hub is disabled (local development) the request is logged and
    treated as sent.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    def _token(self) -> str:
        return generate_sas_token(
            self.settings.payment_hub_uri,
            self.settings.payment_hub_key_name,
            self.settings.payment_hub_key,
            self.settings.payment_hub_ttl
        )

    async def send_payment_request(self, body: Dict[str, Any], log: Optional[logging.Logger] = None) -> Dict[str, Any]:
        """
        POST the payment request to {PAYMENT_HUB_URI}/messages.

        Returns:
            {"status": "success", "message": ..., "claimId": ...}

        Raises:
            PaymentHubError: hub not configured or non-2xx response
            UpstreamServiceError: timeout or transport failure
        """
        log = log or logger
        claim_id = body.get("claimId")

        if not self.settings.payment_hub_enabled:
            log.info(f"[PAYMENT_HUB] Disabled, not sending request for {body.get('agreementNumber')}")
            return {"status": "success", "message": "Payment hub disabled, request not sent", "claimId": claim_id}

        if not self.settings.payment_hub_key_name or not self.settings.payment_hub_key:
            raise PaymentHubError("Payment Hub keyname or key is not set")

        url = f"{self.settings.payment_hub_uri.rstrip('/')}/messages"
        headers = {
            "Authorization": self._token(),
            "Content-Type": "application/json",
            "BrokerProperties": json.dumps({"SessionId": body.get("agreementNumber") or "1"}),
        }

        try:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds, transport=self.transport) as client:
                response = await client.post(url, content=json.dumps(body), headers=headers)
        except httpx.TimeoutException:
            log.error(f"[PAYMENT_HUB] Request timed out after {self.settings.http_timeout_seconds}s")
            raise UpstreamServiceError("Payment hub request timed out")
        except httpx.HTTPError as e:
            log.error(f"[PAYMENT_HUB] Request error: {e}")
            raise UpstreamServiceError(f"Payment hub request error: {e}")

        if not response.is_success:
            raise PaymentHubError(
                f"Payment hub request failed: {response.status_code} {response.reason_phrase}",
                details={"status": response.status_code}
            )

        if "application/json" in response.headers.get("content-type", ""):
            reply = response.json()
            if isinstance(reply, dict) and reply.get("claimId"):
                claim_id = reply["claimId"]

        log.info(f"[PAYMENT_HUB] Request sent for {body.get('agreementNumber')}")
        return {"status": "success", "message": "Payload sent to payment hub successfully", "claimId": claim_id}
