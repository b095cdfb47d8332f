from pydantic import BaseModel, Field, TypeAdapter, field_validator
from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from datetime import datetime


# ============================================
# SHARED FRAGMENTS
# ============================================
class Identifiers(BaseModel):
    sbi: Optional[str] = None
    frn: Optional[str] = None
    crn: Optional[str] = None
    defraId: Optional[str] = None

    class Config:
        extra = "allow"

    @field_validator("sbi", "frn", "crn", "defraId", mode="before")
    @classmethod
    def numbers_as_strings(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class AppliedFor(BaseModel):
    unit: Optional[str] = None
    quantity: Optional[Any] = None


class ActionApplication(BaseModel):
    """Flat action row as submitted with an application"""
    code: Optional[str] = None
    sheetId: Optional[Any] = None
    parcelId: Optional[Any] = None
    description: Optional[str] = None
    appliedFor: AppliedFor = Field(default_factory=AppliedFor)

    class Config:
        extra = "allow"


class ParcelAction(BaseModel):
    code: Optional[str] = None
    version: Optional[Any] = None
    durationYears: Optional[int] = None
    appliedFor: AppliedFor = Field(default_factory=AppliedFor)

    class Config:
        extra = "allow"


class ApplicationParcel(BaseModel):
    sheetId: Optional[Any] = None
    parcelId: Optional[Any] = None
    area: Optional[AppliedFor] = None
    actions: List[ParcelAction] = Field(default_factory=list)

    class Config:
        extra = "allow"


class Application(BaseModel):
    parcel: List[ApplicationParcel] = Field(default_factory=list)

    class Config:
        extra = "allow"


class Answers(BaseModel):
    """Legacy application shape carrying a flat action list"""
    agreementName: Optional[str] = None
    scheme: Optional[str] = None
    actionApplications: List[ActionApplication] = Field(default_factory=list)

    class Config:
        extra = "allow"


# ============================================
# PAYMENT SCHEDULE MODEL
# ============================================
class ParcelItem(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    quantity: Optional[float] = None
    rateInPence: Optional[float] = None
    annualPaymentPence: Optional[int] = None
    sheetId: Optional[str] = None
    parcelId: Optional[str] = None


class AgreementLevelItem(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    annualPaymentPence: Optional[int] = None


class PaymentLineItem(BaseModel):
    parcelItemId: Optional[Any] = None
    agreementLevelItemId: Optional[Any] = None
    paymentPence: int = 0


class Payment(BaseModel):
    paymentDate: str
    totalPaymentPence: int = 0
    lineItems: List[PaymentLineItem] = Field(default_factory=list)


class PaymentSchedule(BaseModel):
    agreementStartDate: Optional[str] = None
    agreementEndDate: Optional[str] = None
    frequency: Optional[str] = None
    agreementTotalPence: Optional[int] = None
    annualTotalPence: Optional[int] = None
    parcelItems: Dict[str, ParcelItem] = Field(default_factory=dict)
    agreementLevelItems: Dict[str, AgreementLevelItem] = Field(default_factory=dict)
    payments: List[Payment] = Field(default_factory=list)

    @field_validator("parcelItems", "agreementLevelItems", mode="before")
    @classmethod
    def missing_items_as_empty(cls, v):
        return {} if v is None else v

    @field_validator("payments", mode="before")
    @classmethod
    def missing_payments_as_empty(cls, v):
        return [] if v is None else v


# ============================================
# AGREEMENT / VERSION MODELS
# ============================================
class Agreement(BaseModel):
    agreement_id: Optional[str] = Field(default=None, alias="_id")
    agreementNumber: str
    agreementName: str
    frn: Optional[str] = None
    sbi: Optional[str] = None
    clientRef: Optional[str] = None
    createdBy: Optional[str] = None
    versions: List[Any] = Field(default_factory=list)
    createdAt: datetime = Field(default_factory=lambda: datetime.utcnow())
    updatedAt: datetime = Field(default_factory=lambda: datetime.utcnow())

    class Config:
        populate_by_name = True


class Version(BaseModel):
    version_id: Optional[str] = Field(default=None, alias="_id")
    notificationMessageId: str
    agreementName: str
    correlationId: str
    clientRef: Optional[str] = None
    code: Optional[str] = None
    scheme: Optional[str] = None
    identifiers: Identifiers = Field(default_factory=Identifiers)
    status: str = "offered"
    signatureDate: Optional[datetime] = None
    actionApplications: List[Dict[str, Any]] = Field(default_factory=list)
    application: Optional[Dict[str, Any]] = None
    payment: Optional[Dict[str, Any]] = None
    applicant: Optional[Dict[str, Any]] = None
    claimId: Optional[str] = None
    agreement: Optional[Any] = None
    createdAt: datetime = Field(default_factory=lambda: datetime.utcnow())
    updatedAt: datetime = Field(default_factory=lambda: datetime.utcnow())

    class Config:
        populate_by_name = True

    def to_document(self) -> Dict[str, Any]:
        """Mongo-ready dict; _id is left for the driver to assign"""
        return self.model_dump(exclude={"version_id"})


class Invoice(BaseModel):
    invoice_id: Optional[str] = Field(default=None, alias="_id")
    agreementNumber: str
    invoiceNumber: str
    correlationId: Optional[str] = None
    claimId: Optional[str] = None
    createdAt: datetime = Field(default_factory=lambda: datetime.utcnow())
    updatedAt: datetime = Field(default_factory=lambda: datetime.utcnow())

    class Config:
        populate_by_name = True


# ============================================
# ROUTE MODELS
# ============================================
class AcceptOfferResponse(BaseModel):
    agreementNumber: str
    status: str
    signatureDate: Optional[datetime] = None
    claimId: Optional[str] = None
    nearestQuarterlyPaymentDate: Optional[str] = None


class UnacceptOfferResponse(BaseModel):
    agreementNumber: str
    status: str


# ============================================
# INBOUND QUEUE EVENTS
# ============================================
class CreateAgreementData(BaseModel):
    correlationId: Optional[str] = None
    clientRef: Optional[str] = None
    code: Optional[str] = None
    identifiers: Optional[Identifiers] = None
    answers: Optional[Answers] = None
    application: Optional[Application] = None
    applicant: Optional[Dict[str, Any]] = None
    payment: Optional[Dict[str, Any]] = None

    class Config:
        extra = "allow"


class StatusUpdateData(BaseModel):
    clientRef: Optional[str] = None
    agreementNumber: Optional[str] = None
    status: Optional[str] = None

    class Config:
        extra = "allow"


class CreateAgreementEvent(BaseModel):
    kind: Literal["create"] = "create"
    type: str
    data: CreateAgreementData


class WithdrawAgreementEvent(BaseModel):
    kind: Literal["withdraw"] = "withdraw"
    type: str
    data: StatusUpdateData


class StatusUpdatedEvent(BaseModel):
    kind: Literal["status_updated"] = "status_updated"
    type: str
    data: StatusUpdateData


class UnrecognisedEvent(BaseModel):
    kind: Literal["unrecognised"] = "unrecognised"
    type: Optional[str] = None
    data: Optional[Any] = None


InboundEvent = Annotated[
    Union[CreateAgreementEvent, WithdrawAgreementEvent, StatusUpdatedEvent, UnrecognisedEvent],
    Field(discriminator="kind")
]

_inbound_event_adapter = TypeAdapter(InboundEvent)

EVENT_KIND_SUFFIXES = (
    ("agreement.create", "create"),
    ("agreement.withdraw", "withdraw"),
    ("application.status.updated", "status_updated"),
    ("application.updated", "status_updated"),
    ("agreement.status.updated", "status_updated"),
)


def event_kind(event_type: Optional[str]) -> str:
    """Map a CloudEvents type such as `cloud.defra.dev.fg-gas-backend.agreement.create` to a kind"""
    for suffix, kind in EVENT_KIND_SUFFIXES:
        if event_type and event_type.endswith(suffix):
            return kind
    return "unrecognised"


def parse_inbound_event(body: Dict[str, Any]) -> InboundEvent:
    """
    Validate a decoded queue message body into one of the inbound event models.

    Raises pydantic.ValidationError when a recognised kind is missing required data.
    """
    if not isinstance(body, dict):
        return UnrecognisedEvent(data=body)
    return _inbound_event_adapter.validate_python({**body, "kind": event_kind(body.get("type"))})
