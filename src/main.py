"""
Vigil - Main application entry point.

Monitors user-defined price and technical-indicator alerts on crypto trading
pairs and sends notifications when their conditions are met.
"""

import asyncio
import sys

import uvicorn
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from vigil.config.logging import get_logger
from vigil.engine import MonitorEngine
from vigil.market_data.provider import BinanceMarketDataProvider
from vigil.ormdb.database import get_engine, get_session_factory
from vigil.services.notification.service import NotificationDispatcher
from vigil.storage.sql import SqlAlchemyAlertStore
from vigil.utils.config import initialize_application, validate_environment
from vigil.webapi.app import create_app


def build_engine(settings) -> MonitorEngine:
    """Wire the monitor engine to its production collaborators."""
    return MonitorEngine(
        store=SqlAlchemyAlertStore(get_session_factory()),
        provider=BinanceMarketDataProvider(
            base_url=settings.market_data_base_url,
            timeout=settings.market_data_timeout_seconds,
        ),
        dispatcher=NotificationDispatcher.from_settings(settings),
        settings=settings,
    )


async def run_headless(engine: MonitorEngine) -> None:
    """Run the monitor without the HTTP API until interrupted."""
    await engine.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await engine.stop()
        await engine.cache.provider.aclose()


def main() -> None:
    """Main application entry point."""
    if not validate_environment():
        print("Please fix the configuration before running the application.")
        sys.exit(1)

    settings = initialize_application()
    logger = get_logger(__name__)
    logger.info("Starting Vigil application")

    engine = build_engine(settings)

    if "-headless" in sys.argv:
        logger.info("Starting headless mode")
        try:
            asyncio.run(run_headless(engine))
        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
            print("\nShutting down...")
        return

    logger.info(
        "Starting API mode",
        host=settings.endpoint_host,
        port=settings.endpoint_port,
    )
    app = create_app(engine, database_engine=get_engine())
    try:
        uvicorn.run(
            app,
            host=settings.endpoint_host,
            port=settings.endpoint_port,
            log_level=settings.api_log_level.lower(),
        )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
        print("\nShutting down...")


if __name__ == "__main__":
    main()
