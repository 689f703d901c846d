"""Entry point for the review bot."""

import logging
import sys

import uvicorn
from dotenv import load_dotenv

from .bot import build_review_bot
from .config import AppConfig
from .server import create_app


def main() -> None:
    """Run the review bot server."""
    # Load .env from current working directory
    load_dotenv(".env", override=False)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger(__name__)

    try:
        config = AppConfig.from_env()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    app = create_app(build_review_bot(config))

    logger.info(f"Starting review bot on {config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port, log_level="info")


if __name__ == "__main__":
    main()
