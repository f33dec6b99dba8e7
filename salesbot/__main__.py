import sys

import uvicorn

from salesbot.config import ConfigError, settings
from salesbot.logging_config import get_logger, setup_logging

logger = get_logger("server")


def main() -> int:
    setup_logging(settings.log_level)
    try:
        settings.require_secrets()
    except ConfigError as exc:
        logger.critical(str(exc))
        return 1

    logger.info(f"Listening on port {settings.port}, webhook path /webhook")
    uvicorn.run("salesbot.main:app", host="0.0.0.0", port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
