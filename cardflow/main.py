import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from cardflow.container import build_container
from cardflow.core.config import get_settings
from cardflow.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from cardflow.core.logging import bind_request_id, clear_request_context, configure_logging, get_logger
from cardflow.db.init import init_db
from cardflow.routers import admin, cards, transactions, users, webhooks

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="Cardflow API",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)
app.state.container = build_container(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    clear_request_context()
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(users.router, prefix="/v1/users", tags=["users"])
app.include_router(cards.router, prefix="/v1/cards", tags=["cards"])
app.include_router(transactions.router, prefix="/v1/cards", tags=["transactions"])
app.include_router(admin.router, prefix="/v1/admin", tags=["admin"])
app.include_router(webhooks.router, prefix="/v1/webhooks", tags=["webhooks"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    await init_db(settings)
    log.info("startup", msg="Repositories ready", backend=settings.repository_backend)
    whatsapp = app.state.container.whatsapp
    if whatsapp.notifications_enabled:
        errors = whatsapp.validate()
        if errors:
            log.warning("whatsapp_config_invalid", errors=errors)


@app.on_event("shutdown")
async def shutdown():
    await app.state.container.close()


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
