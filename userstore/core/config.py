import logging
import os

from pydantic import field_validator
from pydantic_settings import BaseSettings

from userstore.core.exceptions import AuthUserValidationError, ConfigurationError
from userstore.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _get_env_files() -> list[str]:
    """
    Get list of environment files to load in order of precedence.

    Configuration hierarchy (process env vars take highest precedence):
    1. Process environment variables (container / Kubernetes secrets) - HIGHEST PRECEDENCE
    2. .env.{ENVIRONMENT} (environment-specific files, one per entry in ENVIRONMENT)
    3. .env (base configuration file) - LOWEST PRECEDENCE

    ENVIRONMENT is read from the process environment only and may be a
    comma-separated list (e.g. "production,kubernetes"). Defaults to 'local'.

    Returns:
        List of environment file paths that exist
    """
    env_files = []

    environment_var = os.environ.get("ENVIRONMENT", "local")
    environments = [env.strip() for env in environment_var.split(",") if env.strip()]
    logger.debug(f"Using ENVIRONMENT={environment_var} -> environments={environments}")

    if os.path.exists(".env"):
        env_files.append(".env")
        logger.debug("Found base env file: .env")

    for environment in environments:
        env_specific = f".env.{environment}"
        if os.path.exists(env_specific):
            env_files.append(env_specific)
            logger.debug(f"Found environment-specific env file: {env_specific}")
        else:
            logger.debug(f"No environment file {env_specific} (ENVIRONMENT={environment_var})")

    logger.info(f"Configuration loading order: {env_files}")
    return env_files


class Settings(BaseSettings):
    model_config = {"env_file_encoding": "utf-8", "extra": "ignore"}

    ENVIRONMENT: str = "local"

    # Database connection
    DB_URL: str = "postgresql://localhost:5434/obp_mapped"
    DB_USER: str = "obp"
    DB_PASSWORD: str | None = None
    DB_APPLICATION_NAME: str = "obp-keycloak-provider"
    DB_CONNECT_TIMEOUT: float = 10.0  # seconds
    DB_COMMAND_TIMEOUT: float = 30.0  # seconds
    DB_POOL_MIN_SIZE: int = 1
    DB_POOL_MAX_SIZE: int = 10

    # User source: a restricted view by default, the raw authuser table is also supported
    DB_AUTHUSER_TABLE: str = "v_oidc_users"
    # The restricted view has no uniqueid column; set to "uniqueid" when reading the raw authuser table
    DB_LEGACY_ID_COLUMN: str = ""  # empty disables legacy id lookups
    OBP_AUTHUSER_PROVIDER: str | None = None  # only rows with this provider are visible when set

    # Logging configuration
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "log.txt"

    @field_validator("DB_URL")
    @classmethod
    def _strip_jdbc_prefix(cls, value: str) -> str:
        # Deployments migrated from the JDBC provider still carry jdbc:postgresql:// URLs
        value = value.strip()
        if value.startswith("jdbc:"):
            value = value[len("jdbc:") :]
        return value

    @field_validator("DB_AUTHUSER_TABLE", "DB_LEGACY_ID_COLUMN")
    @classmethod
    def _strip_identifier(cls, value: str) -> str:
        return value.strip()

    @field_validator("OBP_AUTHUSER_PROVIDER")
    @classmethod
    def _empty_provider_is_unset(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def legacy_lookup_enabled(self) -> bool:
        return bool(self.DB_LEGACY_ID_COLUMN)

    def safe_dump(self) -> dict[str, object]:
        """Return the configuration for logging and diagnostics, without the password."""
        dump = self.model_dump()
        dump["DB_PASSWORD"] = "SET" if self.DB_PASSWORD else "NOT SET"
        return dump


def validate_configuration(settings: Settings) -> None:
    """
    Check that the configuration is usable before any connection is made.

    Collects every problem and raises once so operators see the full list.

    Raises:
        ConfigurationError: If one or more settings are invalid
    """
    from userstore.connectors.authuser import AuthUserConnector

    problems = []

    if not settings.DB_PASSWORD:
        problems.append("DB_PASSWORD is not set")

    if not settings.DB_URL:
        problems.append("DB_URL is not set")

    try:
        AuthUserConnector.validate_table_name(settings.DB_AUTHUSER_TABLE)
    except AuthUserValidationError as e:
        problems.append(f"DB_AUTHUSER_TABLE: {e}")

    if settings.legacy_lookup_enabled:
        try:
            AuthUserConnector.validate_identifier(settings.DB_LEGACY_ID_COLUMN, "legacy id column")
        except AuthUserValidationError as e:
            problems.append(f"DB_LEGACY_ID_COLUMN: {e}")

    if settings.DB_POOL_MIN_SIZE < 0 or settings.DB_POOL_MAX_SIZE < max(1, settings.DB_POOL_MIN_SIZE):
        problems.append(
            f"Invalid pool sizes: min={settings.DB_POOL_MIN_SIZE}, max={settings.DB_POOL_MAX_SIZE}"
        )

    if problems:
        error = "Invalid userstore configuration: " + "; ".join(problems)
        logger.error(error)
        raise ConfigurationError(error)

    logger.info("All required configuration values are present")


def load_settings(**overrides) -> Settings:
    """
    Build the settings object once at startup and configure logging from it.

    The returned instance is meant to be passed explicitly to the pool and
    service factories; there is no module-level settings object.

    Args:
        **overrides: Field values that take precedence over environment and .env files
    """
    settings = Settings(_env_file=_get_env_files(), **overrides)

    setup_logging(log_to_file=settings.LOG_TO_FILE, log_file_path=settings.LOG_FILE_PATH)

    logger.info("Database configuration loaded:")
    logger.info(f"  URL: {settings.DB_URL}")
    logger.info(f"  User: {settings.DB_USER}")
    logger.info(f"  Password: {'SET' if settings.DB_PASSWORD else 'NOT SET'}")
    logger.info(f"  Auth user table: {settings.DB_AUTHUSER_TABLE}")
    logger.info(f"  Legacy id column: {settings.DB_LEGACY_ID_COLUMN or 'DISABLED'}")
    logger.info(f"  Provider filter: {settings.OBP_AUTHUSER_PROVIDER or 'NONE'}")

    return settings
