"""Command-line entrypoint: ``python -m voice_relay``."""

from __future__ import annotations

import logging
import sys

import uvicorn
from dotenv import load_dotenv

from .app import create_app
from .config import MISSING_API_KEY_HELP, get_settings
from .errors import ConfigurationError
from .server import RelayServer

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def main() -> int:
    load_dotenv()
    settings = get_settings()

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    try:
        app = create_app(settings)
    except ConfigurationError:
        print(MISSING_API_KEY_HELP, file=sys.stderr)
        return 1

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        ws_max_size=settings.max_message_bytes,
        log_level=settings.log_level.lower(),
    )
    RelayServer(config, app.state.shutdown).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
