"""Logging setup for the API and the CLI."""

import logging

from mitgliederverwaltung.core.config import Settings, settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
KEYCLOAK_LOGGER = "mitgliederverwaltung.keycloak"


def configure_logging(config: Settings | None = None) -> None:
    """Install the root handler and apply the Keycloak debug toggle."""
    config = config or settings
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format=LOG_FORMAT,
    )
    if config.keycloak_group_sync_debug:
        logging.getLogger(KEYCLOAK_LOGGER).setLevel(logging.DEBUG)
