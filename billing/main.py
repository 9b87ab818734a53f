import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from billing.api import root_router
from billing.common.code import ErrCode
from billing.configs import configs
from billing.core.logger import LOGGING_CONFIG
from billing.core.payment.provider import list_payment_providers
from billing.infra.database import create_db_and_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Create database tables
    await create_db_and_tables()

    for provider in list_payment_providers():
        state = "configured" if provider.is_configured() else "not configured"
        logger.info(f"Payment provider {provider.display_name}: {state}")

    yield

    # Graceful shutdown: close global Redis client and DB engine
    from billing.infra.redis import close_redis_client

    await close_redis_client()

    from billing.infra.database import async_engine

    await async_engine.dispose()


app = FastAPI(
    title="Billing Service",
    description="Course billing: checkout, Payme/Click settlement, refunds and entitlements",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/billing/api/docs",
    redoc_url="/billing/api/redoc",
    openapi_url="/billing/api/openapi.json",
    redirect_slashes=False,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed input as 400 with the same body shape as other business errors."""
    problems = [
        f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    ]
    logger.warning(f"Request validation failed: {request.method} {request.url.path} {problems}")
    error = ErrCode.INVALID_REQUEST.with_messages("Invalid request", *problems)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": error.as_dict()})


app.include_router(root_router)


@app.get("/health", tags=["health"])
async def health() -> dict:
    from billing.infra.redis import health_check

    return {"status": "ok", "redis": "up" if await health_check() else "down"}


if __name__ == "__main__":
    uvicorn.run(
        "billing.main:app",
        host=configs.Host,
        port=configs.Port,
        log_config=LOGGING_CONFIG,
        reload=configs.Debug,
        reload_excludes=["migrations", "tests"],
    )
