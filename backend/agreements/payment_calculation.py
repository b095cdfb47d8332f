"""
Payment calculation adapter.

Groups an application's parcel actions into the shape the Land Grants
payment calculation service expects, posts it, and keeps only the fields of
the returned payment schedule that an agreement version stores.
"""

from typing import Any, Dict, List, Optional
import logging
import math
import re

import httpx

from agreements.errors import (
    PaymentCalculationError,
    PaymentCalculationMissingPaymentError,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)

CALCULATE_PATH = "/payments/calculate"

PAYMENT_SCHEDULE_FIELDS = (
    "agreementStartDate",
    "agreementEndDate",
    "frequency",
    "agreementTotalPence",
    "annualTotalPence",
    "parcelItems",
    "agreementLevelItems",
    "payments",
)

_FLOAT_PREFIX = re.compile(r"^\s*[+-]?(?:inf(?:inity)?|nan|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)", re.IGNORECASE)


def _coerce_number(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _FLOAT_PREFIX.match(str(raw))
    if not match:
        return None
    return float(match.group(0))


def parse_quantity(raw: Any) -> Optional[float]:
    """Parse an applied-for quantity; None unless finite and positive"""
    value = _coerce_number(raw)
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    return value


def to_land_grants_payload(actions: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Group raw action applications by (sheetId, parcelId).

    Actions missing sheetId, parcelId or code are skipped entirely. Actions
    with an unusable quantity are dropped but still open their group, which
    is then sent with an empty actions list. Group order is first-seen order.
    """
    if not isinstance(actions, list):
        raise TypeError("actions must be a list")

    grouped: Dict[tuple, Dict[str, Any]] = {}

    for action in actions:
        if not isinstance(action, dict):
            continue
        if not action.get("sheetId") or not action.get("parcelId") or not action.get("code"):
            continue

        key = (action["sheetId"], action["parcelId"])
        group = grouped.setdefault(key, {
            "sheetId": action["sheetId"],
            "parcelId": action["parcelId"],
            "actions": []
        })

        quantity = parse_quantity((action.get("appliedFor") or {}).get("quantity"))
        if quantity is None:
            continue

        group["actions"].append({"code": action["code"], "quantity": quantity})

    return {"landActions": list(grouped.values())}


def to_land_grants_payload_from_parcels(parcels: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Same grouping for applications already nested as parcels with actions"""
    if not isinstance(parcels, list):
        raise TypeError("parcels must be a list")

    grouped: Dict[tuple, Dict[str, Any]] = {}

    for parcel in parcels:
        if not isinstance(parcel, dict) or not parcel.get("sheetId") or not parcel.get("parcelId"):
            continue

        parcel_actions = parcel.get("actions")
        if not isinstance(parcel_actions, list):
            raise TypeError("parcel actions must be a list")

        key = (parcel["sheetId"], parcel["parcelId"])
        group = grouped.setdefault(key, {
            "sheetId": parcel["sheetId"],
            "parcelId": parcel["parcelId"],
            "actions": []
        })

        for action in parcel_actions:
            quantity = parse_quantity((action.get("appliedFor") or {}).get("quantity"))
            if quantity is None:
                continue
            group["actions"].append({"code": action.get("code"), "quantity": quantity})

    return {"landActions": list(grouped.values())}


class PaymentCalculator:
    """
    Client for the Land Grants payment calculation service.

    `transport` lets callers (tests) substitute the httpx transport.
    """

    def __init__(
        self,
        base_uri: str,
        token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_uri = base_uri.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def _post_payment_calculation(self, body: Dict[str, Any]) -> Any:
        url = f"{self.base_uri}{CALCULATE_PATH}"
        headers = {"Content-Type": "application/json", **self._auth_headers()}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException:
            logger.error(f"[PAYMENTS] Payment calculation timed out after {self.timeout}s")
            raise UpstreamServiceError("Land Grants payment calculation timed out")
        except httpx.HTTPError as e:
            logger.error(f"[PAYMENTS] Payment calculation request error: {e}")
            raise UpstreamServiceError(f"Land Grants payment calculation request error: {e}")

        if not response.is_success:
            raise PaymentCalculationError(
                status=response.status_code,
                reason=response.reason_phrase,
                body=response.text
            )

        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text

    async def calculate_payments_based_on_actions(
        self,
        actions: List[Dict[str, Any]],
        log: Optional[logging.Logger] = None
    ) -> Dict[str, Any]:
        """
        Calculate the payment schedule for a list of action applications.

        Raises:
            TypeError: actions is not a list
            PaymentCalculationError: non-2xx response
            PaymentCalculationMissingPaymentError: 2xx response without payment
        """
        return await self._calculate(to_land_grants_payload(actions), log or logger)

    async def calculate_payments_based_on_parcels(
        self,
        parcels: List[Dict[str, Any]],
        log: Optional[logging.Logger] = None
    ) -> Dict[str, Any]:
        """Calculate the payment schedule for parcels with nested actions"""
        return await self._calculate(to_land_grants_payload_from_parcels(parcels), log or logger)

    async def _calculate(self, payload: Dict[str, Any], log: logging.Logger) -> Dict[str, Any]:
        log.info(f"[PAYMENTS] Requesting payment calculation for {len(payload['landActions'])} parcel(s)")
        response = await self._post_payment_calculation(payload)

        payment = response.get("payment") if isinstance(response, dict) else None
        if not isinstance(payment, dict):
            raise PaymentCalculationMissingPaymentError()

        log.info("[PAYMENTS] Payment calculation received")
        return {name: payment.get(name) for name in PAYMENT_SCHEDULE_FIELDS}
