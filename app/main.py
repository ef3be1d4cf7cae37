import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.db.database import init_db
from app.api.v1.routes.settlements import router as settlements_router
from app.services.exceptions import SettlementError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()

    if settings.NOTIFICATIONS_ENABLED:
        from app.rabbitmq.setup import init_rabbitmq
        from app.rabbitmq.producer import close_settlement_notifier
        try:
            init_rabbitmq()
        except Exception as e:
            # Notifications are optional; the service runs without them
            logger.error(f"Failed to initialize RabbitMQ, settlement events will not be published: {e}")
        yield
        close_settlement_notifier()
    else:
        yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Splits shared expenses, tracks settlements and nets debts",
    version=settings.PROJECT_VERSION,
    lifespan=lifespan
)


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(settlements_router)


@app.get("/")
def read_root():
    return {"message": "Split Service API", "version": settings.PROJECT_VERSION}


@app.get("/health")
def health_check():
    return {"status": "healthy"}
