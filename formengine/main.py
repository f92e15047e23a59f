"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from formengine.core.config import settings
from formengine.core.exceptions import FormEngineError
from formengine.core.structured_logging import configure_logging
from formengine.db import models  # noqa: F401  (registers tables on Base.metadata)
from formengine.db.base import Base
from formengine.db.session import engine

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("formengine %s started (env=%s)", settings.VERSION, settings.ENV)
    yield


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="formengine API",
    description="Dynamic form schema runtime and spreadsheet auto-import engine",
    version=settings.VERSION,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    lifespan=lifespan,
)


@app.exception_handler(FormEngineError)
async def form_engine_error_handler(request: Request, exc: FormEngineError):
    """Engine errors a router did not translate."""
    logger.warning("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ============================================================================
# Routers
# ============================================================================

from formengine.routers import forms, imports  # noqa: E402

app.include_router(forms.router)
app.include_router(imports.router)


@app.get("/health")
def health():
    return {"status": "ok", "version": settings.VERSION}
