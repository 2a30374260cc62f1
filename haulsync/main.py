import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from haulsync.core.config import settings
from haulsync.core.errors import install_error_handlers
from haulsync.database import Base, check_database_connection, engine

# Model modules register their tables on Base.metadata
from haulsync.models import company, fleet, load, marketplace, messaging, trip  # noqa: F401
from haulsync.routes.balance_disputes import router as balance_disputes_router
from haulsync.routes.compliance import router as compliance_router
from haulsync.routes.driver import router as driver_router
from haulsync.routes.loads import router as loads_router
from haulsync.routes.marketplace import router as marketplace_router
from haulsync.routes.matching import router as matching_router
from haulsync.routes.me import router as me_router
from haulsync.routes.messaging import router as messaging_router
from haulsync.routes.push_tokens import router as push_tokens_router
from haulsync.routes.sharing import router as sharing_router
from haulsync.routes.trips import router as trips_router

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)
env_lower = (settings.ENV or "").strip().lower()
session_https_only = env_lower in {"production", "prod"}
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SESSION_SECRET_KEY,
    same_site="lax",
    https_only=session_https_only,
    domain=(settings.SESSION_COOKIE_DOMAIN or None),
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)

app.include_router(me_router)
app.include_router(messaging_router)
app.include_router(push_tokens_router)
app.include_router(matching_router)
app.include_router(trips_router)
app.include_router(driver_router)
app.include_router(loads_router)
app.include_router(marketplace_router)
app.include_router(compliance_router)
app.include_router(sharing_router)
app.include_router(balance_disputes_router)


@app.on_event("startup")
def startup() -> None:
    logging.basicConfig(level=(settings.LOG_LEVEL or "INFO").upper())
    Base.metadata.create_all(bind=engine)
    logger.info("startup: %s ready (env=%s)", settings.APP_NAME, settings.ENV)


@app.get("/health")
def health() -> dict[str, str]:
    database = "connected"
    status_value = "healthy"
    try:
        check_database_connection()
    except SQLAlchemyError as exc:
        logger.warning("health: database check failed: %s", exc)
        database = "disconnected"
        status_value = "degraded"
    return {"status": status_value, "database": database}
