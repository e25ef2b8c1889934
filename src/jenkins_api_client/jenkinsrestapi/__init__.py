"""Jenkins REST API client package.

Provides an async HTTP client for the Jenkins remote access API that
manages the CSRF crumb and returns raw responses. Interpreting the
server's job and build data is left to callers.

Exports:
    JenkinsApiClient: HTTP client with crumb handling and bounded retry.
    types: Module containing the configuration, crumb and payload types.
    errors: Module containing the client's exceptions.
    DEFAULT_TIMEOUT: Default HTTP request timeout.
"""

from . import errors, types
from .client import (
    CRUMB_ISSUER_PATH,
    DEFAULT_TIMEOUT,
    JSON_API_SUFFIX,
    JenkinsApiClient,
    RetryAction,
)
from .errors import (
    ClientNotInitializedError,
    CrumbIssueError,
    JenkinsConnectionError,
    JenkinsError,
    JenkinsRequestError,
)
from .types import FormPayload, JsonEnvelopePayload

__all__ = [
    "CRUMB_ISSUER_PATH",
    "DEFAULT_TIMEOUT",
    "JSON_API_SUFFIX",
    "ClientNotInitializedError",
    "CrumbIssueError",
    "FormPayload",
    "JenkinsApiClient",
    "JenkinsConnectionError",
    "JenkinsError",
    "JenkinsRequestError",
    "JsonEnvelopePayload",
    "RetryAction",
    "errors",
    "types",
]
