"""Entry point: ``python -m vikunja_mcp`` or ``vikunja-mcp``."""

import asyncio

from dotenv import load_dotenv

load_dotenv()

from .core.config import settings  # noqa: E402
from .server.server import create_mcp_server  # noqa: E402
from .utils.logging_config import setup_logging  # noqa: E402


def main() -> None:
    logger = setup_logging(level=settings.log_level, log_file=settings.get_log_file())
    server = create_mcp_server("vikunja-filters")
    server.setup_handlers()
    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
