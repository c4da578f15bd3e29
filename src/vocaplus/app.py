import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .errors import (
    NoQuestionsBuiltError,
    SessionError,
    SourceUnavailableError,
    VocaPlusError,
)
from .globals import get_engine, repository
from .log_handler import SQLiteHandler
from .router import router

logger = logging.getLogger(__name__)


# --- Logging Setup ---
def setup_logging():
    logger = logging.getLogger("vocaplus")
    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    if not os.path.exists(settings.LOG_DIR):
        os.makedirs(settings.LOG_DIR, exist_ok=True)
    log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if settings.LOG_TO_DB and not any(isinstance(h, SQLiteHandler) for h in logger.handlers):
        db_handler = SQLiteHandler()
        db_handler.setFormatter(formatter)
        logger.addHandler(db_handler)
    # Also configure root logger to see logs from other libraries
    logging.basicConfig(level=logging.INFO)


# --- Error Mapping ---
def status_for(error: VocaPlusError) -> int:
    if isinstance(error, SourceUnavailableError):
        return 503
    if isinstance(error, NoQuestionsBuiltError):
        return 422
    if isinstance(error, SessionError):
        return 409
    return 400


async def vocaplus_error_handler(request: Request, exc: VocaPlusError):
    status = status_for(exc)
    logger.warning(f"{request.method} {request.url.path} -> {status}: {exc}")
    return JSONResponse({"error": str(exc), "type": type(exc).__name__}, status_code=status)


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    repository.load_all()
    get_engine()
    yield
    get_engine().close()


# --- App Factory ---
def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(
        title=settings.PROJECT_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan,
        root_path=settings.ROOT_PATH,
    )

    app.add_exception_handler(VocaPlusError, vocaplus_error_handler)
    app.include_router(router)

    return app
