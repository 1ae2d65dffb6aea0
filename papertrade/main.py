"""FastAPI application entrypoint."""
import logging
import sys

from fastapi import FastAPI
from pydantic import BaseModel

from papertrade.accounts.api import router as accounts_router
from papertrade.config import Config
from papertrade.context import TradingContext
from papertrade.db import AsyncSessionLocal, close_db, init_db
from papertrade.ledger.api import router as ledger_router
from papertrade.marketdata.api import router as prices_router
from papertrade.notifier import Notifier
from papertrade.orders.api import router as orders_router
from papertrade.pipeline import PriceTickHandler
from papertrade.positions.api import router as positions_router
from papertrade.risk.api import router as risk_router

# Configure logging
logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Validate config on startup
try:
    Config.validate()
except ValueError as e:
    logger.error(f"Configuration error: {e}")
    sys.exit(1)

app = FastAPI(title=Config.APP_NAME, version="1.0.0")
app.state.trading = TradingContext(notifier=Notifier(Config.ALERT_WEBHOOK_URL))
app.state.tick_subscription = None


class MessageResponse(BaseModel):
    """Standard response model."""
    message: str


app.include_router(accounts_router)
app.include_router(ledger_router)
app.include_router(positions_router)
app.include_router(orders_router)
app.include_router(risk_router)
app.include_router(prices_router)


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize database and subscribe the tick handler to the price feed."""
    logger.info("Initializing database...")
    try:
        await init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise

    ctx: TradingContext = app.state.trading
    handler = PriceTickHandler(ctx, AsyncSessionLocal)
    app.state.tick_subscription = ctx.feed.subscribe(handler)
    logger.info("Price tick handler subscribed")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Cleanup on shutdown."""
    logger.info("Shutting down...")

    subscription = app.state.tick_subscription
    if subscription is not None:
        subscription.unsubscribe()
        app.state.tick_subscription = None
    app.state.trading.close()

    logger.info("Closing database connections...")
    try:
        await close_db()
    except Exception as e:
        logger.warning(f"Error closing database: {e}")


@app.get("/health")
async def health_check() -> MessageResponse:
    """Health check endpoint."""
    return MessageResponse(message="OK")


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting {Config.APP_NAME} v1.0.0 on 0.0.0.0:8000")
    logger.info(f"Alert webhook: {Config.ALERT_WEBHOOK_URL or 'disabled'}")

    uvicorn.run(
        "papertrade.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False
    )
