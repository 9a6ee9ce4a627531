"""FastAPI application for the signup risk engine.

Provides:
- Pre-signup risk validation
- Stored risk score lookup for audits
- Health check

Flow:
1. POST /antifraud/validate - Score the attempt before creating the account
2. (caller creates the account, then calls RiskEngine.finalize_signup)
3. GET /antifraud/accounts/{id}/risk - Inspect the stored assessment
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from signup_guard.config import load_config
from signup_guard.db.database import async_session, init_db
from signup_guard.engine import RiskEngine
from signup_guard.routes import router as antifraud_router
from signup_guard.schemas import HealthResponse
from signup_guard.security.validators import ValidatorSuite
from signup_guard.store import RiskStore

load_dotenv(os.path.join(os.getcwd(), ".env.local"))
load_dotenv()  # Also try default .env

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("signup-guard-api")


# =============================================================================
# App Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle - load config, create tables, share one HTTP client."""
    config = load_config()
    if os.getenv("ANTIFRAUD_CREATE_TABLES", "true").lower() == "true":
        await init_db()

    client = httpx.AsyncClient()
    app.state.engine = RiskEngine(
        config,
        RiskStore(async_session),
        ValidatorSuite.from_config(config, client=client),
    )
    logger.info(f"Risk engine ready (antifraud_enabled={config.enabled})")
    yield
    await client.aclose()


app = FastAPI(
    title="Signup Guard API",
    description="Signup-time fraud risk scoring",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(antifraud_router)


# =============================================================================
# Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    engine = getattr(app.state, "engine", None)
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        antifraud_enabled=bool(engine and engine.config.enabled),
    )
