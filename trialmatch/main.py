import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models  # noqa: F401
from .config import FRONTEND_URL
from .database import Base, engine
from .domain.cancellations.router import router as cancellations_router
from .domain.outreach.router import router as outreach_router
from .domain.reschedules.router import router as reschedules_router
from .domain.sessions.router import router as sessions_router
from .domain.tutors.router import router as tutors_router
from .exceptions import TrialEngineError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

API_PREFIX = "/api"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Trial Match API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(TrialEngineError)
async def trial_engine_exception_handler(request: Request, exc: TrialEngineError):
    """Typed workflow errors render as {"error": code, "detail": message}"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.code}: {exc.detail}")
    else:
        logger.warning(f"{request.method} {request.url.path} - {exc.code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationError", "detail": jsonable_encoder(exc.errors())},
    )


# CORS Configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", f"{FRONTEND_URL},http://localhost:3000").split(",")
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(sessions_router, prefix=API_PREFIX)
app.include_router(outreach_router, prefix=API_PREFIX)
app.include_router(reschedules_router, prefix=API_PREFIX)
app.include_router(cancellations_router, prefix=API_PREFIX)
app.include_router(tutors_router, prefix=API_PREFIX)


@app.get("/")
def root():
    return {"message": "Trial Match API is running"}


@app.get(f"{API_PREFIX}/health")
def health():
    return {"status": "healthy"}
