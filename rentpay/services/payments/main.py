"""HTTP surface for M-Pesa STK push payments.

Initiation is rate limited per client IP before any gateway call; the
callback webhook always acknowledges authenticated deliveries so Daraja stops
retrying; history and admin listings are paginated reads.
"""

import json
from time import perf_counter
from uuid import uuid4

import redis
from fastapi import BackgroundTasks, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from rentpay.common.config import settings
from rentpay.common.db import SessionLocal
from rentpay.common.errors import NotFound, PaymentError, Unauthorized
from rentpay.common.logging import configure_logging, logger, trace_id_ctx
from rentpay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from rentpay.common.startup import log_startup_config
from rentpay.common.tracing import configure_tracing
from rentpay.services.payments.callbacks import (
    ACKNOWLEDGEMENT,
    SIGNATURE_HEADER,
    CallbackReconciler,
    CallbackVerifier,
)
from rentpay.services.payments.daraja import DarajaClient
from rentpay.services.payments.history import DEFAULT_LIMIT, DEFAULT_PAGE, PaymentHistoryQuery
from rentpay.services.payments.notifications import PaymentNotifier
from rentpay.services.payments.rate_limit import FixedWindowRateLimiter, get_client_ip
from rentpay.services.payments.schemas import ChargeRequest, ChargeResponse, PaymentOut, PaymentPage
from rentpay.services.payments.service import PaymentInitiationService
from rentpay.services.payments.store import PaymentRecordStore
from rentpay.services.payments.token_cache import AccessTokenCache

configure_logging()
log_startup_config(settings)

store = PaymentRecordStore(SessionLocal)
gateway = DarajaClient(
    settings.mpesa_api_base,
    settings.mpesa_consumer_key,
    settings.mpesa_consumer_secret,
    timeout=settings.mpesa_timeout_seconds,
)
tokens = AccessTokenCache(
    gateway.fetch_access_token,
    ttl_seconds=settings.mpesa_token_ttl_seconds,
    expiry_margin_seconds=settings.mpesa_token_expiry_margin_seconds,
)
initiation = PaymentInitiationService(store, gateway, tokens, settings)
reconciler = CallbackReconciler(store, service_name=settings.service_name)
history_query = PaymentHistoryQuery(store)
verifier = CallbackVerifier(settings.mpesa_callback_secret, settings.callback_allowed_ips_set)
notifier = PaymentNotifier()
rate_limiter = FixedWindowRateLimiter(
    redis.Redis.from_url(settings.redis_url, decode_responses=True, socket_timeout=1.0),
    limit=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window_seconds,
)

app = FastAPI(title="Rentpay Payments")
configure_tracing(app, settings)


def get_store() -> PaymentRecordStore:
    return store


def get_tokens() -> AccessTokenCache:
    return tokens


def get_initiation_service() -> PaymentInitiationService:
    return initiation


def get_reconciler() -> CallbackReconciler:
    return reconciler


def get_history_query() -> PaymentHistoryQuery:
    return history_query


def get_verifier() -> CallbackVerifier:
    return verifier


def get_notifier() -> PaymentNotifier:
    return notifier


def get_rate_limiter() -> FixedWindowRateLimiter:
    return rate_limiter


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency; bind the correlation id for logs."""

    trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(PaymentError)
async def payment_error_handler(_: Request, exc: PaymentError) -> JSONResponse:
    """Render the error taxonomy as a stable JSON envelope."""

    body = {"status": "error", "code": exc.code, "message": exc.message}
    if exc.detail is not None and not settings.is_production:
        body["detail"] = exc.detail
    if exc.status_code >= 500:
        logger.error("request failed code=%s message=%s", exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in err["loc"] if part != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"status": "error", "code": "validation_error", "message": "Invalid request", "errors": errors},
    )


def enforce_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise Unauthorized("invalid API key")


def enforce_rate_limit(request: Request, limiter: FixedWindowRateLimiter = Depends(get_rate_limiter)) -> None:
    limiter.hit(get_client_ip(request))


@app.post("/payments/initiate", response_model=ChargeResponse, dependencies=[Depends(enforce_rate_limit)])
async def initiate_payment(
    req: ChargeRequest,
    x_payer_id: str | None = Header(default=None),
    service: PaymentInitiationService = Depends(get_initiation_service),
):
    """Send an STK push to the payer's phone and record it as Pending."""

    return await service.initiate(req, payer_id=x_payer_id)


@app.post("/payments/callback")
async def payment_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    callback_verifier: CallbackVerifier = Depends(get_verifier),
    callback_reconciler: CallbackReconciler = Depends(get_reconciler),
    payment_notifier: PaymentNotifier = Depends(get_notifier),
):
    """Daraja result webhook. Unauthenticated deliveries get 403; all
    authenticated ones are acknowledged, whatever happened internally."""

    body = await request.body()
    callback_verifier.verify(body, request.headers.get(SIGNATURE_HEADER), get_client_ip(request))
    try:
        payload = json.loads(body)
    except ValueError:
        logger.error("stk callback body is not valid JSON")
        return ACKNOWLEDGEMENT

    result = await run_in_threadpool(callback_reconciler.reconcile, payload)
    if result.payment is not None:
        background_tasks.add_task(payment_notifier.notify, result.payment)
    return ACKNOWLEDGEMENT


@app.get("/payments/health")
def health(payment_store: PaymentRecordStore = Depends(get_store), token_cache: AccessTokenCache = Depends(get_tokens)):
    """Liveness/readiness summary of the database and gateway session."""

    database = "connected" if payment_store.ping() else "disconnected"
    return {
        "status": "operational" if database == "connected" else "degraded",
        "services": {
            "database": database,
            "gateway": "authenticated" if token_cache.peek() is not None else "unauthenticated",
        },
    }


@app.get("/payments/status/{checkout_request_id}", response_model=PaymentOut)
def payment_status(checkout_request_id: str, payment_store: PaymentRecordStore = Depends(get_store)):
    """Current state of one push, for clients polling after initiation."""

    payment = payment_store.find_by_checkout_id(checkout_request_id)
    if payment is None:
        raise NotFound("payment not found")
    return payment


@app.get("/payments/history/{phone}", response_model=PaymentPage)
def payment_history(
    phone: str,
    page: int = DEFAULT_PAGE,
    limit: int = DEFAULT_LIMIT,
    query: PaymentHistoryQuery = Depends(get_history_query),
):
    """Paginated payment history for one payer phone number."""

    return query.history(phone, page, limit)


@app.get("/admin/payments", response_model=PaymentPage, dependencies=[Depends(enforce_api_key)])
def admin_payments(
    page: int = DEFAULT_PAGE,
    limit: int = DEFAULT_LIMIT,
    status: str | None = None,
    query: PaymentHistoryQuery = Depends(get_history_query),
):
    """All payments, newest first, optionally filtered by status."""

    return query.admin_listing(page, limit, status)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
