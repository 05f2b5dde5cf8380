from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import os
import logging
from dotenv import load_dotenv
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from crm.errors import CRMError, ExternalServiceError
from crm.routers import stages, deals, catalog, dashboard, billing, webhooks, integrations

load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Sentry error tracking (only when a DSN is configured)
SENTRY_DSN = os.getenv("SENTRY_DSN")
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        traces_sample_rate=0.1,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=os.getenv("RELEASE_VERSION", "1.0.0"),
        integrations=[
            FastApiIntegration(),
            StarletteIntegration(),
        ],
        # Filter out health checks
        before_send=lambda event, hint: None if event.get("request", {}).get("url", "").endswith("/health") else event,
    )
    SENTRY_ENABLED = True
    logger.info("Sentry error tracking enabled")
else:
    SENTRY_ENABLED = False
    logger.info("Sentry DSN not configured, error tracking disabled")

# Rate limiter configuration
# Uses remote address for identification
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Pipeline CRM API",
    description="Sales pipeline, deals and revenue metrics",
    version="1.0.0"
)

# Add rate limiter to app state
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please try again later.",
            "retry_after": exc.detail
        }
    )


@app.exception_handler(CRMError)
async def crm_error_handler(request: Request, exc: CRMError):
    if isinstance(exc, ExternalServiceError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# CORS configuration
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers (each carries its own prefix)
app.include_router(stages.router)
app.include_router(deals.router)
app.include_router(catalog.router)
app.include_router(dashboard.router)
app.include_router(billing.router)
app.include_router(integrations.router)
app.include_router(webhooks.router)


@app.get("/")
def read_root():
    return {
        "message": "Welcome to Pipeline CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    return {
        "status": "ok",
        "environment": os.getenv("ENVIRONMENT", "development"),
        "sentry": "enabled" if SENTRY_ENABLED else "disabled",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
