# chat_uploads/main.py
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_uploads.core.errors import ErrorKind, UploadError
from chat_uploads.core.logging_config import setup_logging, logger
from chat_uploads.core.settings import settings
from chat_uploads.db import Base, engine
from chat_uploads import models  # noqa: F401  (registreert SQLAlchemy modellen)
from chat_uploads.dependencies import get_orchestrator
from chat_uploads.observability.metrics import router as metrics_router
from chat_uploads.routers import uploads


# ----------------------------------------------------
# App init
# ----------------------------------------------------
app = FastAPI(title="chat-uploads", version="0.1.0")

setup_logging()
logger.info("startup", service="chat-uploads-api", env=settings.APP_ENV)


# ----------------------------------------------------
# Health
# ----------------------------------------------------
@app.get("/health", include_in_schema=True)
def health() -> dict:
    return {"status": "ok"}


# ----------------------------------------------------
# Logging middleware
# ----------------------------------------------------
@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    start = time.time()

    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    client_ip = request.client.host if request.client else "unknown"

    bound_logger = logger.bind(
        request_id=request_id,
        ip=client_ip,
        endpoint=str(request.url.path),
        method=request.method,
    )

    bound_logger.info("request_started")
    response = await call_next(request)
    latency_ms = round((time.time() - start) * 1000, 2)

    bound_logger.bind(status_code=response.status_code, latency_ms=latency_ms).info(
        "request_finished"
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------------------------------
# Error handlers
# ----------------------------------------------------
@app.exception_handler(UploadError)
def upload_error_handler(request: Request, exc: UploadError):
    # volledige oorzaak alleen in de logs, client krijgt kind + (generieke) message
    log = logger.bind(endpoint=str(request.url.path), kind=exc.kind.value)
    if exc.status_code >= 500:
        log.error("request_failed", error=exc.message, cause=repr(exc.cause) if exc.cause else None)
    else:
        log.info("request_rejected", error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": {"kind": ErrorKind.VALIDATION.value, "message": message}},
    )


# ----------------------------------------------------
# Routers
# ----------------------------------------------------
app.include_router(uploads.router)
app.include_router(metrics_router)  # /metrics


# ----------------------------------------------------
# Startup
# ----------------------------------------------------
@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    # scanner verbinden; in productie faalt de start hier als clamd weg is
    get_orchestrator().startup()
