"""
BitHedge — Main Entry Point
Serves the quoting API; the oracle loop starts inside the app lifespan.
"""
import uvicorn

from bithedge.api.app import app
from bithedge.config.settings import get_settings
from bithedge.utils.logger import get_logger, setup_logging

logger = get_logger("main")


def main() -> None:
    settings = get_settings()
    setup_logging()
    logger.info(
        "starting_bithedge",
        version=settings.version,
        asset=settings.asset,
        oracle_loop=settings.oracle_loop_enabled,
        port=settings.port,
    )
    # structlog owns log formatting; uvicorn must not install its own config
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
