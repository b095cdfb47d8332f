from fastapi import FastAPI, APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId, Decimal128
import logging
from typing import List, Optional, Dict, Any
from datetime import datetime

from agreements.document_renderer import build_agreement_tables
from agreements.errors import AgreementError, AgreementNotFoundError, UnauthorizedError
from agreements.event_publisher import EventPublisher, create_sns_client
from agreements.invoices import InvoiceAllocator
from agreements.lifecycle import LifecycleEngine, get_first_payment_date
from agreements.message_processor import SqsConsumer, create_sqs_client
from agreements.object_store import AgreementDocumentStore, create_s3_client
from agreements.payment_calculation import PaymentCalculator
from agreements.payment_hub import PaymentHubClient
from agreements.store import AgreementStore
from auth import get_auth_token, validate_jwt_authentication
from config import Settings, load_settings
from models import AcceptOfferResponse, UnacceptOfferResponse

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize MongoDB document for JSON response (handles Decimal128, ObjectId, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            result[key] = str(value)
        elif isinstance(value, Decimal128):
            result[key] = float(value.to_decimal())
        elif isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = serialize_doc(value)
        elif isinstance(value, list):
            result[key] = [
                serialize_doc(item) if isinstance(item, dict)
                else float(item.to_decimal()) if isinstance(item, Decimal128)
                else str(item) if isinstance(item, ObjectId)
                else item.isoformat() if isinstance(item, datetime)
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def build_engine(db, settings: Settings) -> LifecycleEngine:
    """Wire the lifecycle engine to its collaborators"""
    return LifecycleEngine(
        store=AgreementStore(db),
        payment_calculator=PaymentCalculator(
            settings.land_grants_uri,
            settings.land_grants_token,
            timeout=settings.http_timeout_seconds
        ),
        payment_hub=PaymentHubClient(settings),
        publisher=EventPublisher(create_sns_client(settings), settings),
        invoices=InvoiceAllocator(db),
        settings=settings
    )


def create_app(
    settings: Optional[Settings] = None,
    db=None,
    engine: Optional[LifecycleEngine] = None,
    document_store: Optional[AgreementDocumentStore] = None,
    consumers: Optional[List[SqsConsumer]] = None
) -> FastAPI:
    """
    Build the API application.

    Collaborators not passed in are created from settings; queue consumers
    are only started when a list is supplied.
    """
    settings = settings or load_settings()
    logging.getLogger().setLevel(settings.log_level)

    client = None
    if engine is None and db is None:
        client = AsyncIOMotorClient(settings.mongo_uri)
        db = client[settings.mongo_database]

    engine = engine or build_engine(db, settings)
    store = engine.store
    document_store = document_store or AgreementDocumentStore(create_s3_client(settings), settings)
    consumers = consumers or []

    app = FastAPI(
        title="Farming Grants Agreements API",
        version="2.0.0",
        description="Agreement offers, acceptance and payment schedules"
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.document_store = document_store

    # Create router with /api prefix
    api_router = APIRouter(prefix="/api")

    # ============================================
    # ERROR HANDLING
    # ============================================

    @app.exception_handler(AgreementError)
    async def agreement_error_handler(request: Request, exc: AgreementError):
        if exc.status_code >= 500:
            logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.message, "error": type(exc).__name__}
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"[API] Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"message": "Internal server error", "error": str(exc)}
        )

    # ============================================
    # HELPERS
    # ============================================

    async def load_authorised(agreement_number: str, token: Optional[str]) -> Dict[str, Any]:
        agreement = await store.get_by_agreement_number(agreement_number)
        if not agreement:
            raise AgreementNotFoundError(agreement_number)
        if not validate_jwt_authentication(token, agreement, settings.jwt_secret, settings.jwt_enabled):
            raise UnauthorizedError("Not authorized to view/accept offer agreement document")
        return agreement

    # ============================================
    # AGREEMENT ENDPOINTS
    # ============================================

    @api_router.get("/agreements/sbi/{sbi}")
    async def get_agreement_by_sbi(sbi: str, token: Optional[str] = Depends(get_auth_token)):
        agreement = await store.get_by_sbi(sbi)
        if not agreement:
            raise AgreementNotFoundError(sbi, message=f"Agreement not found for SBI {sbi}")
        if not validate_jwt_authentication(token, agreement, settings.jwt_secret, settings.jwt_enabled):
            raise UnauthorizedError("Not authorized to view offer agreement document")
        return serialize_doc(agreement)

    @api_router.get("/agreements/{agreement_number}")
    async def get_agreement(agreement_number: str, token: Optional[str] = Depends(get_auth_token)):
        agreement = await load_authorised(agreement_number, token)
        return serialize_doc(agreement)

    @api_router.post("/agreements/{agreement_number}/accept", response_model=AcceptOfferResponse)
    async def accept_agreement(agreement_number: str, token: Optional[str] = Depends(get_auth_token)):
        agreement = await load_authorised(agreement_number, token)
        accepted = await engine.accept_offer(agreement_number, agreement, logger)

        first_payment = get_first_payment_date((accepted.get("payment") or {}).get("agreementStartDate"))
        return AcceptOfferResponse(
            agreementNumber=accepted["agreementNumber"],
            status=accepted["status"],
            signatureDate=accepted.get("signatureDate"),
            claimId=accepted.get("claimId"),
            nearestQuarterlyPaymentDate=first_payment.isoformat() if first_payment else None
        )

    @api_router.post("/agreements/{agreement_number}/unaccept", response_model=UnacceptOfferResponse)
    async def unaccept_agreement(agreement_number: str, token: Optional[str] = Depends(get_auth_token)):
        await load_authorised(agreement_number, token)
        updated = await engine.unaccept_offer(agreement_number, logger)
        return UnacceptOfferResponse(agreementNumber=updated["agreementNumber"], status=updated["status"])

    @api_router.get("/agreements/{agreement_number}/document")
    async def get_agreement_document(agreement_number: str, token: Optional[str] = Depends(get_auth_token)):
        agreement = await load_authorised(agreement_number, token)
        pdf = await document_store.get_agreement_pdf(agreement)
        if pdf is None:
            raise AgreementNotFoundError(
                agreement_number,
                message=f"Agreement document not found for {agreement_number}"
            )
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={"Content-Disposition": f'inline; filename="{agreement_number}.pdf"'}
        )

    @api_router.get("/agreements/{agreement_number}/schedule")
    async def get_agreement_schedule(agreement_number: str, token: Optional[str] = Depends(get_auth_token)):
        agreement = await load_authorised(agreement_number, token)
        return build_agreement_tables(agreement)

    # ============================================
    # HEALTH
    # ============================================

    @app.get("/health")
    async def health():
        return {"message": "success"}

    app.include_router(api_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup():
        await store.ensure_indexes()
        await engine.invoices.create_unique_constraints()
        for consumer in consumers:
            consumer.start()

    @app.on_event("shutdown")
    async def shutdown():
        for consumer in consumers:
            await consumer.stop()
        if client is not None:
            client.close()

    return app


def build_consumers(engine: LifecycleEngine, settings: Settings) -> List[SqsConsumer]:
    sqs_client = create_sqs_client(settings)
    return [
        SqsConsumer(sqs_client, settings.sqs_create_queue_url, engine, settings),
        SqsConsumer(sqs_client, settings.sqs_application_updated_queue_url, engine, settings),
    ]


def create_default_app() -> FastAPI:
    """Application used by `uvicorn server:app`, with both queue consumers"""
    settings = load_settings()
    client = AsyncIOMotorClient(settings.mongo_uri)
    engine = build_engine(client[settings.mongo_database], settings)
    app = create_app(settings, engine=engine, consumers=build_consumers(engine, settings))

    @app.on_event("shutdown")
    async def close_db_client():
        client.close()

    return app


app = create_default_app()
