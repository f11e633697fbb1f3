import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import audit_hooks  # noqa: F401  registers the audit_logs listener
from . import errors
from .api import admin, assignments, orders, payments
from .config import get_settings
from .db import Base, engine
from .metrics import router as metrics_router
from .worker import start_worker, stop_worker

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # DB init (dev convenience); production runs alembic upgrade head
    Base.metadata.create_all(bind=engine)
    if settings.WORKER_ENABLED:
        start_worker()
        logger.info("background worker started (poll %ss)", settings.WORKER_POLL_SECONDS)
    yield
    stop_worker()


app = FastAPI(title="HaulOps API", version="1.0", lifespan=lifespan)

# CORS
origins = ["*"] if settings.CORS_ORIGINS == "*" else [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(settings.FILES_DIR, exist_ok=True)
app.mount("/files", StaticFiles(directory=settings.FILES_DIR), name="files")

STATUS_BY_ERROR = {
    errors.NotFound: 404,
    errors.ValidationError: 422,
    errors.ConcurrencyConflict: 503,
}


@app.exception_handler(errors.CoreError)
async def core_error_handler(request: Request, exc: errors.CoreError):
    status_code = STATUS_BY_ERROR.get(type(exc), 409)
    headers = {"Retry-After": "1"} if isinstance(exc, errors.ConcurrencyConflict) else None
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()}, headers=headers)


app.include_router(orders.router)
app.include_router(assignments.router)
app.include_router(payments.router)
app.include_router(admin.router)
app.include_router(admin.system_router)
app.include_router(metrics_router)


@app.get("/health")
def health():
    return {"ok": True}
