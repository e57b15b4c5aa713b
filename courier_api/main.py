import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from courier_api.core.config import settings
from courier_api.core.db import Base, engine
from courier_api.core.errors import DeliveryError, TransientError
from courier_api.domains.delivery.router import router as delivery_router
from courier_api.domains.notifications.router import router as notifications_router
from courier_api.domains.notifications.push import push_missing_fields
from courier_api.domains.payments.router import router as payments_router
from courier_api.domains.rider.router import router as rider_router

logger = logging.getLogger(__name__)


app = FastAPI(title=settings.app_name)


@app.exception_handler(DeliveryError)
async def _delivery_error_handler(request: Request, exc: DeliveryError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(OperationalError)
async def _db_unavailable_handler(request: Request, exc: OperationalError):
    logger.warning("data store unavailable path=%s error=%s", request.url.path, exc.orig)
    err = TransientError()
    return JSONResponse(status_code=err.status_code, content={"detail": err.to_detail()})


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    # Helpful for debugging 422s in dev. Do not log full bodies in prod.
    if settings.env == "dev":
        try:
            body = await request.body()
        except Exception:
            body = b""
        logger.info("[422] path=%s errors=%s body=%r", request.url.path, exc.errors(), body[:500])
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


# Dev CORS so the web dashboards can call the API from the browser.
origins = [o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins if origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup() -> None:
    # Auto-create tables; schema changes beyond new tables go through migrations.
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health() -> dict:
    return {
        "ok": True,
        "service": settings.app_name,
        "env": settings.env,
        "push_missing": push_missing_fields(),
    }


app.include_router(delivery_router, tags=["deliveries"])
app.include_router(rider_router, tags=["riders"])
app.include_router(notifications_router, tags=["notifications"])
app.include_router(payments_router, tags=["payments"])
