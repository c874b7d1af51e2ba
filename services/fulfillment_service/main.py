from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from shared.config.database import engine, Base
from shared.observability import setup_observability
from shared.security import limiter
from .exceptions import FulfillmentError
from .router import router, public_router
from . import models  # noqa: F401 registers tables with Base

fulfillment_app = FastAPI(
    title="Fulfillment Service",
    version="1.0.0",
    description="Multi-vendor order fulfillment: reservations, shipments and status cascade.",
)

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(fulfillment_app, "fulfillment_service")

# --- SECURITY SETUP ---
fulfillment_app.state.limiter = limiter
fulfillment_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@fulfillment_app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


fulfillment_app.include_router(public_router)
fulfillment_app.include_router(router)

@fulfillment_app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
