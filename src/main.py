"""
Cognito Session Service

Handles:
1. Password sign-in with optional MFA step-up
2. Session refresh and logout
3. Registration and password flows
4. MFA enrollment
"""

import os
import sys
from pathlib import Path

# Add src directory to Python path
src_path = Path(__file__).parent
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from auth.mfa import MfaEnrollmentService
from auth.session_registry import SessionRegistry
from routers import auth

# Set up logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Filter out /health from access logs
class HealthCheckFilter(logging.Filter):
    def filter(self, record):
        return '/health' not in record.getMessage()

logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())

# botocore logs every credential lookup at INFO
logging.getLogger("botocore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("=== Cognito Session Service Starting ===")
    session_registry = SessionRegistry.from_env()
    app.state.session_registry = session_registry
    app.state.mfa_service = MfaEnrollmentService(session_registry.provider)

    yield  # Application is running

    # Shutdown
    logger.info("=== Cognito Session Service Shutting Down ===")
    await session_registry.aclose()


app = FastAPI(
    title="Cognito Session Service",
    version="1.0.0",
    description="Session establishment, MFA and account flows against a Cognito user pool",
    lifespan=lifespan
)

# Add CORS middleware for local development
if os.getenv('ENVIRONMENT', 'development') == 'development':
    logger.info("Adding CORS middleware for local development")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",  # Frontend dev server
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(auth.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="::",
        port=int(os.getenv("PORT", "8080")),
        log_level="info"
    )
