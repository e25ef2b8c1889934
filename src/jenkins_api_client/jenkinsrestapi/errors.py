"""Exceptions raised by the Jenkins REST API client."""


class JenkinsError(Exception):
    """Base exception for all Jenkins client errors."""


class ClientNotInitializedError(JenkinsError):
    """Raised when a request is issued before ``init()`` has completed."""


class CrumbIssueError(JenkinsError):
    """Raised when a CSRF crumb cannot be obtained from the server.

    Fatal for the call that needed it; the crumb fetch is never retried.
    """


class JenkinsConnectionError(JenkinsError):
    """Raised when the server could not be reached at all."""


class JenkinsRequestError(JenkinsError):
    """Raised when the server answers with a non-2xx status.

    Attributes:
        status_code: HTTP status of the final response.
        method: HTTP method of the failed request.
        url: Absolute URL the request was sent to.
        body: Raw response body text.
        detail: Human-readable message extracted from the body, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        method: str,
        url: str,
        body: str = "",
        detail: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.method = method
        self.url = url
        self.body = body
        self.detail = detail
