from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from . import schemas
from .auth import authenticate
from .config import Settings
from .database import connect_once, get_connection, init_db, ping
from .errors import GatewayError, NotFoundError
from .orders import OrderService
from .repository import MerchantRecord, MerchantRepository, OrderRecord, OrderRepository, PaymentRepository
from .service import CardDetails, PaymentCommand, PaymentProcessor, shape_payment
from .settlement import SettlementPolicy, build_settlement_policy

logger = logging.getLogger("gateway-service")


def create_app(
    settings: Settings | None = None,
    connection_factory=None,
    policy: SettlementPolicy | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    # startup waits for the database; request-time connections fail fast
    factory = connection_factory or connect_once
    policy = policy or build_settlement_policy(settings)

    init_db(connection_factory or get_connection, settings.test_merchant)
    app = FastAPI(
        title="Payment Gateway",
        version="0.1.0",
        description="Mock payment gateway: merchant orders, UPI and card payments with simulated settlement.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": {"code": "BAD_REQUEST_ERROR", "description": _describe(exc)}},
        )

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"code": "INTERNAL_ERROR", "description": "Internal error"}},
        )

    def get_merchant_repository() -> MerchantRepository:
        return MerchantRepository(connection_factory=factory)

    def get_order_service() -> OrderService:
        return OrderService(OrderRepository(connection_factory=factory))

    def get_processor() -> PaymentProcessor:
        return PaymentProcessor(PaymentRepository(connection_factory=factory), policy)

    def require_merchant(
        x_api_key: Optional[str] = Header(default=None),
        x_api_secret: Optional[str] = Header(default=None),
        repo: MerchantRepository = Depends(get_merchant_repository),
    ) -> MerchantRecord:
        return authenticate(repo, x_api_key, x_api_secret)

    @app.get("/health", response_model=schemas.HealthResponse, tags=["system"])
    def health() -> schemas.HealthResponse:
        return schemas.HealthResponse(
            database="connected" if ping(factory) else "disconnected",
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    @app.get("/api/v1/test/merchant", response_model=schemas.SeedMerchantResponse, tags=["system"])
    def test_merchant(
        repo: MerchantRepository = Depends(get_merchant_repository),
    ) -> schemas.SeedMerchantResponse:
        merchant = repo.find_by_email(settings.test_merchant.email)
        if merchant is None:
            raise NotFoundError("Test merchant not found")
        return schemas.SeedMerchantResponse(
            id=merchant.id,
            email=merchant.email,
            api_key=merchant.api_key,
            api_secret=merchant.api_secret,
        )

    @app.post(
        "/api/v1/orders",
        response_model=schemas.OrderSummary,
        status_code=status.HTTP_201_CREATED,
        tags=["orders"],
    )
    def create_order(
        payload: schemas.CreateOrderRequest,
        merchant: MerchantRecord = Depends(require_merchant),
        orders: OrderService = Depends(get_order_service),
    ) -> schemas.OrderSummary:
        record = orders.create_order(
            merchant,
            payload.amount,
            currency=payload.currency,
            receipt=payload.receipt,
            notes=payload.notes,
        )
        return schemas.OrderSummary(**record.__dict__)

    @app.get("/api/v1/orders/{order_id}", response_model=schemas.OrderSummary, tags=["orders"])
    def get_order(
        order_id: str,
        merchant: MerchantRecord = Depends(require_merchant),
        orders: OrderService = Depends(get_order_service),
    ) -> schemas.OrderSummary:
        return schemas.OrderSummary(**orders.get_order(order_id, merchant).__dict__)

    @app.get("/api/v1/orders/{order_id}/public", response_model=schemas.PublicOrder, tags=["orders"])
    def get_public_order(
        order_id: str,
        orders: OrderService = Depends(get_order_service),
    ) -> schemas.PublicOrder:
        record = orders.get_public_order(order_id)
        return schemas.PublicOrder(
            id=record.id,
            merchant_id=record.merchant_id,
            amount=record.amount,
            currency=record.currency,
            receipt=record.receipt,
            notes=record.notes,
            status=record.status,
        )

    @app.post(
        "/api/v1/payments",
        response_model=schemas.PaymentView,
        response_model_exclude_unset=True,
        status_code=status.HTTP_201_CREATED,
        tags=["payments"],
    )
    async def create_payment(
        payload: schemas.PaymentRequest,
        merchant: MerchantRecord = Depends(require_merchant),
        orders: OrderService = Depends(get_order_service),
        processor: PaymentProcessor = Depends(get_processor),
    ) -> schemas.PaymentView:
        order = await run_in_threadpool(orders.get_order, payload.order_id, merchant)
        return await _process(processor, order, payload)

    @app.post(
        "/api/v1/payments/public",
        response_model=schemas.PaymentView,
        response_model_exclude_unset=True,
        status_code=status.HTTP_201_CREATED,
        tags=["payments"],
    )
    async def create_public_payment(
        payload: schemas.PaymentRequest,
        orders: OrderService = Depends(get_order_service),
        processor: PaymentProcessor = Depends(get_processor),
    ) -> schemas.PaymentView:
        order = await run_in_threadpool(orders.get_public_order, payload.order_id)
        return await _process(processor, order, payload)

    @app.get(
        "/api/v1/payments",
        response_model=List[schemas.PaymentView],
        response_model_exclude_unset=True,
        tags=["payments"],
    )
    def list_payments(
        merchant: MerchantRecord = Depends(require_merchant),
        processor: PaymentProcessor = Depends(get_processor),
    ) -> List[schemas.PaymentView]:
        return [schemas.PaymentView(**shape_payment(record)) for record in processor.list_payments(merchant)]

    @app.get("/api/v1/payments/stats", response_model=schemas.PaymentStatsResponse, tags=["payments"])
    def payment_stats(
        merchant: MerchantRecord = Depends(require_merchant),
        processor: PaymentProcessor = Depends(get_processor),
    ) -> schemas.PaymentStatsResponse:
        return schemas.PaymentStatsResponse(**processor.payment_stats(merchant).__dict__)

    @app.get(
        "/api/v1/payments/{payment_id}",
        response_model=schemas.PaymentView,
        response_model_exclude_unset=True,
        tags=["payments"],
    )
    def get_payment(
        payment_id: str,
        merchant: MerchantRecord = Depends(require_merchant),
        processor: PaymentProcessor = Depends(get_processor),
    ) -> schemas.PaymentView:
        return schemas.PaymentView(**shape_payment(processor.get_payment(payment_id, merchant)))

    @app.get(
        "/api/v1/payments/{payment_id}/public",
        response_model=schemas.PaymentView,
        response_model_exclude_unset=True,
        tags=["payments"],
    )
    def get_public_payment(
        payment_id: str,
        processor: PaymentProcessor = Depends(get_processor),
    ) -> schemas.PaymentView:
        return schemas.PaymentView(**shape_payment(processor.get_public_payment(payment_id)))

    return app


async def _process(
    processor: PaymentProcessor, order: OrderRecord, payload: schemas.PaymentRequest
) -> schemas.PaymentView:
    card = None
    if payload.card is not None:
        card = CardDetails(
            number=payload.card.number or "",
            expiry_month=payload.card.expiry_month,
            expiry_year=payload.card.expiry_year,
            cvv=payload.card.cvv,
            holder_name=payload.card.holder_name,
        )
    record = await processor.create_payment(
        order, PaymentCommand(method=payload.method, vpa=payload.vpa, card=card)
    )
    return schemas.PaymentView(**shape_payment(record))


def _describe(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message
