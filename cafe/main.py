import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cafe.core.config import (
    CORS_ORIGINS,
    DATABASE_URL,
    DEV_ADMIN_EMAIL,
    DEV_ADMIN_NAME,
    DEV_ADMIN_PASSWORD,
)
from cafe.core.database import Base, SessionLocal, engine
from cafe.core.logging_setup import configure_logging
from cafe.core.roles import Role
from cafe.core.startup_checks import ensure_migrations_applied, validate_database_environment
from cafe.middleware.observability import ObservabilityMiddleware
import cafe.models  # garante que os models são importados antes do create_all
import cafe.services.event_handlers  # registra handlers do event bus

from cafe.models.user import User
from cafe.services.auth import hash_password, password_looks_hashed
from cafe.services.users import UserDirectory
from cafe.routers.auth import router as auth_router
from cafe.routers.orders import router as orders_router
from cafe.routers.products import router as products_router
from cafe.routers.realtime import router as realtime_router
from cafe.routers.internal_metrics import router as internal_metrics_router

configure_logging()

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[ADMIN_BOOTSTRAP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Cafe API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Corpo malformado é 400; 409 fica para conflitos de estoque
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors())},
    )


def _bootstrap_initial_admin() -> None:
    if not DEV_ADMIN_PASSWORD:
        logger.warning("%s skipped: configure DEV_ADMIN_PASSWORD.", BOOTSTRAP_PREFIX)
        return

    logger.info("%s start email=%s", BOOTSTRAP_PREFIX, DEV_ADMIN_EMAIL)

    db = SessionLocal()
    try:
        existing_admin = UserDirectory(db).find_by_email(DEV_ADMIN_EMAIL)
        if existing_admin:
            logger.info("%s exists id=%s email=%s", BOOTSTRAP_PREFIX, existing_admin.id, existing_admin.email)
            return

        password_hash = (
            DEV_ADMIN_PASSWORD if password_looks_hashed(DEV_ADMIN_PASSWORD) else hash_password(DEV_ADMIN_PASSWORD)
        )
        admin = User(
            email=DEV_ADMIN_EMAIL.lower(),
            name=DEV_ADMIN_NAME or "Admin",
            password_hash=password_hash,
            role=Role.ADMIN,
            active=True,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)
        logger.info("%s created success id=%s email=%s", BOOTSTRAP_PREFIX, admin.id, admin.email)
    except Exception:
        logger.exception("%s ERROR bootstrap failed", BOOTSTRAP_PREFIX)
        raise
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        _bootstrap_initial_admin()
    except Exception:
        logger.exception("%s ERROR startup failed", BOOTSTRAP_PREFIX)
        raise


# Routers
app.include_router(auth_router)
app.include_router(orders_router)
app.include_router(products_router)
app.include_router(realtime_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
