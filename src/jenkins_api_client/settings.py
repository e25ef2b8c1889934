"""Configuration and logging setup for the Jenkins API client."""

import logging
import os
import pathlib

import pydantic
import structlog

from . import jenkinsrestapi

CONFIG_ENV_VAR = "JENKINS_CLIENT_CONFIG_PATH"
logger = structlog.get_logger(__name__)


class ClientSettings(pydantic.BaseModel):
    """Configuration for a Jenkins API client."""

    url: str = pydantic.Field(description="Root URL of the Jenkins server")
    username: str = pydantic.Field(description="Jenkins user name")
    api_token: str | None = pydantic.Field(
        None,
        description="API token of the user",
    )
    api_token_file: str | None = pydantic.Field(
        None,
        description="Path to file containing the API token",
    )
    timeout: float = pydantic.Field(
        jenkinsrestapi.DEFAULT_TIMEOUT,
        description="Request timeout in seconds",
        gt=0,
    )
    log_level: str = pydantic.Field("INFO", description="Logging level")

    @pydantic.model_validator(mode="after")
    def _check_token_source(self) -> "ClientSettings":
        if (self.api_token is None) == (self.api_token_file is None):
            msg = "exactly one of api_token and api_token_file must be set"
            raise ValueError(msg)
        return self

    def resolve_api_token(self) -> str:
        """Return the API token, reading it from ``api_token_file`` if needed."""
        if self.api_token is not None:
            return self.api_token

        token_path = pathlib.Path(self.api_token_file)
        if not token_path.exists():
            msg = f"Token file not found: {self.api_token_file}"
            raise FileNotFoundError(msg)
        return token_path.read_text().strip()


def configure_logging(log_level_name: str, json_output: bool = False) -> None:
    """Configure structlog for the application embedding the client.

    Renders logfmt lines by default, or one JSON object per line when
    ``json_output`` is set. The library itself never calls this.
    """
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.processors.LogfmtRenderer(key_order=("timestamp", "level", "msg"))
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_path: str) -> ClientSettings:
    """Load and validate client settings from a JSON file."""
    path = pathlib.Path(config_path)
    if not path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)
    return ClientSettings.model_validate_json(path.read_text())


def build_client(settings: ClientSettings) -> jenkinsrestapi.JenkinsApiClient:
    """Construct an uninitialized client from validated settings."""
    client = jenkinsrestapi.JenkinsApiClient(
        base_url=settings.url,
        username=settings.username,
        api_token=settings.resolve_api_token(),
        timeout=settings.timeout,
    )
    logger.info("Created Jenkins client", base_url=client.base_url)
    return client


def create_client(
    config_path: str | None = None,
    *,
    setup_logging: bool = False,
) -> jenkinsrestapi.JenkinsApiClient:
    """Create a client using a config path or environment default.

    Logging is left to the application unless ``setup_logging`` is set, in
    which case structlog is configured at the settings' ``log_level``.
    The returned client still has to be initialized with ``await client.init()``.
    """
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR, "/config.json")
    settings = load_config(resolved_path)
    if setup_logging:
        configure_logging(settings.log_level)
    return build_client(settings)
