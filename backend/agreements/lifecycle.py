"""
AGREEMENT LIFECYCLE ENGINE

Create, accept, unaccept and withdraw agreement offers.

Every status change is a single filtered update on the latest version
(see AgreementStore.update_one_agreement_version), so concurrent callers
race on the stored status and at most one wins. A filtered update that
matches nothing surfaces as AgreementNotFoundError; the engine looks the
agreement up afterwards so the error and the log say whether it is missing
or sitting in another status.

Accepting an offer is a saga:
    1. offered -> accepted (signatureDate, payment schedule)   undo: unaccept
    2. allocate the invoice and claim id                       undo: delete invoice
    3. register the payment with the payment hub, store claimId
A failure in a later step runs the undo actions in reverse and re-raises.
A process crash between steps 1 and 3 can still leave an accepted version
without a payment hub registration.

Lifecycle events are published after the change is persisted. A publish
failure is logged and never rolls the change back.
"""

from datetime import date, datetime, timezone
from typing import Dict, Any, Optional, Union
import logging
import secrets
import uuid

from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from agreements.errors import AgreementNotFoundError, AgreementValidationError
from agreements.idempotency import ensure_idempotent
from agreements.payment_hub import build_payment_request
from agreements.retention import to_date
from agreements.saga import Saga, SagaStep
from agreements.transitions import AGREEMENT_TRANSITIONS, AgreementStatus, Transition, TransitionTable
from config import Settings
from models import Agreement, CreateAgreementData, Version

logger = logging.getLogger(__name__)

AGREEMENT_NUMBER_PREFIX = "SFI"
DEFAULT_AGREEMENT_NAME = "Unnamed Agreement"
CREATED_BY = "farming-grants-agreements-api"

# (month, day) of the quarterly payment dates
QUARTERLY_PAYMENT_DAYS = ((3, 5), (6, 5), (9, 5), (12, 5))


def generate_agreement_number() -> str:
    return f"{AGREEMENT_NUMBER_PREFIX}{100000000 + secrets.randbelow(900000000)}"


def get_first_payment_date(start_date: Union[str, date, datetime, None]) -> Optional[date]:
    """First quarterly payment date (5 Mar/Jun/Sep/Dec) on or after the start date"""
    if not start_date:
        return None
    start = to_date(start_date)
    for month, day in QUARTERLY_PAYMENT_DAYS:
        candidate = date(start.year, month, day)
        if candidate >= start:
            return candidate
    month, day = QUARTERLY_PAYMENT_DAYS[0]
    return date(start.year + 1, month, day)


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return value


def build_action_applications(data: CreateAgreementData) -> list:
    """Flat action rows from either the answers or the application.parcel shape"""
    if data.answers and data.answers.actionApplications:
        return [action.model_dump() for action in data.answers.actionApplications]

    actions = []
    for parcel in (data.application.parcel if data.application else []):
        for action in parcel.actions:
            actions.append({
                "code": action.code,
                "sheetId": parcel.sheetId,
                "parcelId": parcel.parcelId,
                "durationYears": action.durationYears,
                "appliedFor": action.appliedFor.model_dump(),
            })
    return actions


class LifecycleEngine:
    """Agreement status transitions with their side effects"""

    def __init__(
        self,
        store,
        payment_calculator,
        payment_hub,
        publisher,
        invoices,
        settings: Settings,
        transitions: TransitionTable = AGREEMENT_TRANSITIONS
    ):
        self.store = store
        self.payment_calculator = payment_calculator
        self.payment_hub = payment_hub
        self.publisher = publisher
        self.invoices = invoices
        self.settings = settings
        self.transitions = transitions

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_offer(
        self,
        notification_message_id: str,
        payload: Union[Dict[str, Any], CreateAgreementData, None],
        log: Optional[logging.Logger] = None
    ) -> Dict[str, Any]:
        """
        Create an offered agreement version from an approved application.

        Idempotent on notification_message_id: a repeated message returns the
        agreement it produced the first time.
        """
        log = log or logger

        if not payload:
            raise AgreementValidationError("Offer data is required")

        try:
            data = payload if isinstance(payload, CreateAgreementData) else CreateAgreementData.model_validate(payload)
        except ValidationError as e:
            raise AgreementValidationError(f"Offer data is invalid: {e}")

        identifiers = data.identifiers
        if not identifiers or not (identifiers.sbi or identifiers.frn):
            raise AgreementValidationError("Offer data must include identifiers")

        action_applications = build_action_applications(data)
        if not action_applications:
            raise AgreementValidationError("Offer data must include at least one action")

        result = await ensure_idempotent(self.store, notification_message_id)
        if result.is_duplicate:
            log.info(f"[LIFECYCLE] Message {notification_message_id} already processed, returning existing agreement")
            return result.existing

        agreement_name = (data.answers.agreementName if data.answers else None) or DEFAULT_AGREEMENT_NAME
        version = Version(
            notificationMessageId=notification_message_id,
            agreementName=agreement_name,
            correlationId=str(uuid.uuid4()),
            clientRef=data.clientRef,
            code=data.code,
            scheme=data.answers.scheme if data.answers else None,
            identifiers=identifiers,
            status=AgreementStatus.OFFERED,
            actionApplications=action_applications,
            application=data.application.model_dump() if data.application else None,
            payment=data.payment,
            applicant=data.applicant,
        )
        parent = Agreement(
            agreementNumber=generate_agreement_number(),
            agreementName=agreement_name,
            frn=identifiers.frn,
            sbi=identifiers.sbi,
            clientRef=data.clientRef,
            createdBy=CREATED_BY,
        ).model_dump(include={"agreementNumber", "agreementName", "frn", "sbi", "clientRef", "createdBy"})

        try:
            await self.store.create_agreement_with_versions(parent, [version.to_document()])
        except DuplicateKeyError:
            existing = await self.store.get_by_notification_message_id(notification_message_id)
            if not existing:
                raise
            log.info(f"[LIFECYCLE] Message {notification_message_id} was processed concurrently")
            return existing

        snapshot = await self.store.get_by_notification_message_id(notification_message_id)
        log.info(f"[LIFECYCLE] Offer {snapshot['agreementNumber']} created from {notification_message_id}")

        await self._publish_status(snapshot, log)
        return snapshot

    # =========================================================================
    # ACCEPT
    # =========================================================================

    async def accept_offer(
        self,
        agreement_number: str,
        snapshot: Optional[Dict[str, Any]] = None,
        log: Optional[logging.Logger] = None
    ) -> Dict[str, Any]:
        """
        Accept an offered agreement and register its payment.

        Either the agreement ends accepted with a claimId, or it is reverted
        to offered and the original error is raised.
        """
        log = log or logger

        if not agreement_number:
            raise AgreementValidationError("Agreement data is required")

        transition = self.transitions.get("accept")
        snapshot = snapshot or await self.store.get_by_agreement_number(agreement_number)
        if not snapshot or snapshot.get("status") != transition.from_state:
            raise await self._not_found(agreement_number, transition, log)

        payment = await self._calculate_payment(snapshot, log)

        async def accept(context):
            updated = await self.store.update_one_agreement_version(
                transition.build_filter(agreementNumber=agreement_number),
                transition.build_update({"signatureDate": datetime.utcnow(), "payment": payment})
            )
            if not updated:
                raise await self._not_found(agreement_number, transition, log)
            log.info(f"[LIFECYCLE] Agreement {agreement_number} accepted")
            return {"agreement": updated}

        async def unaccept(context):
            await self._apply_unaccept(agreement_number, log)

        async def allocate_invoice(context):
            agreement = context["agreement"]
            invoice = await self.invoices.create_invoice(agreement_number, agreement.get("correlationId"), agreement)
            return {"invoice": invoice}

        async def delete_invoice(context):
            await self.invoices.delete_invoice(context["invoice"]["invoiceNumber"])

        async def register_payment(context):
            agreement, invoice = context["agreement"], context["invoice"]
            request = build_payment_request(agreement, invoice)
            response = await self.payment_hub.send_payment_request(request, log)
            claim_id = response.get("claimId") or invoice["claimId"]
            await self.store.set_version_fields(agreement["_id"], {"claimId": claim_id})
            await self.invoices.update_invoice(invoice["invoiceNumber"], {"paymentHubRequest": request})
            return {"claimId": claim_id}

        saga = Saga("accept_offer", [
            SagaStep("accept", accept, compensation=unaccept),
            SagaStep("invoice", allocate_invoice, compensation=delete_invoice),
            SagaStep("payment_hub", register_payment),
        ], log)
        context = await saga.run({"agreementNumber": agreement_number})

        accepted = {**context["agreement"], "claimId": context["claimId"]}
        await self._publish_status(accepted, log, accepted=True)
        return accepted

    async def _calculate_payment(self, snapshot: Dict[str, Any], log: logging.Logger) -> Dict[str, Any]:
        parcels = (snapshot.get("application") or {}).get("parcel")
        if parcels:
            return await self.payment_calculator.calculate_payments_based_on_parcels(parcels, log)
        if snapshot.get("actionApplications"):
            return await self.payment_calculator.calculate_payments_based_on_actions(snapshot["actionApplications"], log)
        if snapshot.get("payment"):
            return snapshot["payment"]
        raise AgreementValidationError(
            f"Agreement {snapshot.get('agreementNumber')} has no actions to calculate payments for"
        )

    # =========================================================================
    # UNACCEPT / WITHDRAW
    # =========================================================================

    async def _apply_unaccept(self, agreement_number: str, log: logging.Logger) -> Optional[Dict[str, Any]]:
        transition = self.transitions.get("unaccept")
        updated = await self.store.update_one_agreement_version(
            transition.build_filter(agreementNumber=agreement_number),
            transition.build_update()
        )
        if updated:
            log.info(f"[LIFECYCLE] Agreement {agreement_number} reverted to {transition.to_state}")
        return updated

    async def unaccept_offer(self, agreement_number: str, log: Optional[logging.Logger] = None) -> Dict[str, Any]:
        """accepted -> offered, clearing signatureDate"""
        log = log or logger
        if not agreement_number:
            raise AgreementValidationError("Agreement ID is required")

        updated = await self._apply_unaccept(agreement_number, log)
        if not updated:
            raise await self._not_found(agreement_number, self.transitions.get("unaccept"), log)
        return updated

    async def withdraw_offer(
        self,
        client_ref: Optional[str],
        agreement_number: Optional[str] = None,
        log: Optional[logging.Logger] = None
    ) -> Optional[Dict[str, Any]]:
        """
        offered -> withdrawn.

        Returns None when no offered version matched; that is not an error.
        """
        log = log or logger
        if not client_ref and not agreement_number:
            raise AgreementValidationError("A clientRef or agreement number is required to withdraw an offer")

        transition = self.transitions.get("withdraw")
        updated = await self.store.update_one_agreement_version(
            transition.build_filter(clientRef=client_ref, agreementNumber=agreement_number),
            transition.build_update()
        )

        if not updated:
            log.info(f"[LIFECYCLE] No offered agreement to withdraw for clientRef={client_ref} agreementNumber={agreement_number}")
            return None

        log.info(f"[LIFECYCLE] Agreement {updated.get('agreementNumber')} withdrawn")
        await self._publish_status(updated, log)
        return updated

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _not_found(
        self,
        agreement_number: str,
        transition: Transition,
        log: logging.Logger
    ) -> AgreementNotFoundError:
        current = await self.store.get_by_agreement_number(agreement_number)
        current_status = current.get("status") if current else None

        if current is None:
            log.info(f"[LIFECYCLE] {transition.name}: agreement {agreement_number} does not exist")
        else:
            log.info(
                f"[LIFECYCLE] {transition.name}: agreement {agreement_number} is '{current_status}', "
                f"expected '{transition.from_state}'"
            )

        return AgreementNotFoundError(
            agreement_number,
            expected_status=transition.from_state,
            current_status=current_status
        )

    def agreement_url(self, agreement_number: str) -> str:
        return f"{self.settings.view_agreement_uri.rstrip('/')}/{agreement_number}"

    async def _publish_status(self, snapshot: Dict[str, Any], log: logging.Logger, accepted: bool = False) -> None:
        data = {
            "agreementNumber": snapshot.get("agreementNumber"),
            "correlationId": snapshot.get("correlationId"),
            "clientRef": snapshot.get("clientRef"),
            "version": snapshot.get("versionCount"),
            "status": snapshot.get("status"),
            "code": snapshot.get("code"),
            "date": _iso(snapshot.get("updatedAt")),
        }
        if accepted:
            payment = snapshot.get("payment") or {}
            data.update({
                "agreementUrl": self.agreement_url(snapshot.get("agreementNumber")),
                "startDate": payment.get("agreementStartDate"),
                "endDate": payment.get("agreementEndDate"),
                "claimId": snapshot.get("claimId"),
            })

        try:
            await self.publisher.publish_status_updated(data, log)
        except Exception as e:
            log.error(f"[LIFECYCLE] Status event for {data['agreementNumber']} ({data['status']}) not published: {e}")
