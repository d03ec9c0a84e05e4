from __future__ import annotations

# File: apps/api/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .billing import router as billing_router
from .models import HealthResponse
from .settings import settings

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

__version__ = "0.1.0"


# --- FastAPI App ---

app = FastAPI(title="Holloway Billing API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    # Explicit origins are required when using credentials (Authorization headers).
    # FRONTEND_BASE_URL is configurable via apps/.env.
    allow_origins=list({
        str(getattr(settings, "FRONTEND_BASE_URL", "") or "").rstrip("/"),
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    } - {""}),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Core Endpoints ---

@app.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", version=__version__)


app.include_router(billing_router)
