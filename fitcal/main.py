from __future__ import annotations

import logging
import os

import uvicorn

from fitcal.config_manager import ConfigManager


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def main() -> None:
    config = ConfigManager(os.getenv("FITCAL_CONFIG_PATH", "config.yaml")).load()
    configure_logging(config.logging.level)
    host = os.getenv("FITCAL_HOST", "0.0.0.0")
    port = int(os.getenv("FITCAL_PORT", "8080"))
    uvicorn.run("fitcal.web_admin:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
