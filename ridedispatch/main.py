"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ridedispatch.api import rides, drivers, scheduler as scheduler_api, ledger
from ridedispatch.config import settings
from ridedispatch.dispatch.scheduler import scheduler
from ridedispatch.errors import RideError, InvalidInput
from ridedispatch.notifications.outbox import outbox, NotificationDispatcher

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

dispatcher = NotificationDispatcher(outbox)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup...")
    dispatcher.start()
    if settings.scheduler_enabled:
        scheduler.start()

    yield

    logger.info("Application shutdown...")
    scheduler.stop()
    dispatcher.stop()


app = FastAPI(
    title="Ride Dispatch API",
    description="Dispatch orchestration for on-demand and scheduled rides",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RideError)
async def ride_error_handler(request: Request, exc: RideError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) or "body" for err in exc.errors())
    err = InvalidInput(f"Invalid request body: {fields}")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


app.include_router(rides.router, prefix="/api/rides", tags=["Rides"])
app.include_router(drivers.router, prefix="/api/drivers", tags=["Drivers"])
app.include_router(scheduler_api.router, prefix="/api/scheduler", tags=["Scheduler"])
app.include_router(ledger.router, prefix="/api/ledger", tags=["Ledger"])


@app.get("/api/health")
def health_check():
    return {"status": "healthy", "service": "ride-dispatch"}


if __name__ == "__main__":
    import os
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
