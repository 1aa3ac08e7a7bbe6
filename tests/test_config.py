"""
Tests for settings and logging setup.
"""

import logging

from mitgliederverwaltung.core.config import Settings, sanitize_issuer
from mitgliederverwaltung.core.logging import KEYCLOAK_LOGGER, configure_logging
from mitgliederverwaltung.keycloak.context import KeycloakConfig


def make_settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


class TestSanitizeIssuer:
    """Tests for sanitize_issuer."""

    def test_first_token_without_slash(self) -> None:
        """Test only the first whitespace token is kept, trailing slash removed."""
        assert sanitize_issuer("https://kc.example/realms/verein/  # comment") == "https://kc.example/realms/verein"

    def test_empty(self) -> None:
        """Test empty values stay empty."""
        assert sanitize_issuer(None) == ""
        assert sanitize_issuer("   ") == ""


class TestSettings:
    """Tests for Settings post-processing."""

    def test_base_url_and_realm_from_issuer(self) -> None:
        """Test base URL and realm are derived from the issuer."""
        config = make_settings(keycloak_issuer="https://kc.example/realms/verein/")

        assert config.keycloak_base_url == "https://kc.example"
        assert config.keycloak_realm == "verein"
        assert config.keycloak_issuer == "https://kc.example/realms/verein"

    def test_explicit_values_win(self) -> None:
        """Test explicit base URL and realm are not overwritten."""
        config = make_settings(
            keycloak_issuer="https://kc.example/realms/verein",
            keycloak_base_url="https://internal:8443/",
            keycloak_realm="other",
        )

        assert config.keycloak_base_url == "https://internal:8443"
        assert config.keycloak_realm == "other"

    def test_postgres_url_uses_asyncpg(self) -> None:
        """Test plain postgres URLs are rewritten to the asyncpg driver."""
        assert make_settings(database_url="postgres://u:p@db/m").database_url == "postgresql+asyncpg://u:p@db/m"
        assert make_settings(database_url="postgresql://u:p@db/m").database_url == "postgresql+asyncpg://u:p@db/m"

    def test_keycloak_configured(self) -> None:
        """Test the admin API needs all four settings."""
        config = make_settings(
            keycloak_issuer="https://kc.example/realms/verein",
            keycloak_client_id="admin",
        )
        assert config.keycloak_configured is False

        config = make_settings(
            keycloak_issuer="https://kc.example/realms/verein",
            keycloak_client_id="admin",
            keycloak_client_secret="secret",
        )
        assert config.keycloak_configured is True
        assert KeycloakConfig.from_settings(config).complete is True


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_group_sync_debug_toggle(self) -> None:
        """Test the Keycloak logger drops to DEBUG when the toggle is set."""
        logger = logging.getLogger(KEYCLOAK_LOGGER)
        previous = logger.level
        try:
            configure_logging(make_settings(keycloak_group_sync_debug=True))

            assert logger.level == logging.DEBUG
        finally:
            logger.setLevel(previous)
