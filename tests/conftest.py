"""Shared fixtures: an in-process fake Jenkins server behind httpx.MockTransport."""

from collections import defaultdict
from typing import Any

import httpx
import pytest

from jenkins_api_client.jenkinsrestapi import CRUMB_ISSUER_PATH, JenkinsApiClient

BASE_URL = "http://jenkins.test"
CRUMB_FIELD = "Jenkins-Crumb"


class FakeJenkins:
    """Records every request and answers from per-route response queues.

    Each route holds a list of (status, kwargs) pairs; responses are
    consumed in order and the last one repeats. The crumb issuer answers
    ``crumb-1``, ``crumb-2``, ... unless a route overrides it. Unknown
    routes answer 404.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.crumbs_issued = 0
        self._routes: dict[tuple[str, str], list[tuple[int, dict[str, Any]]]] = defaultdict(list)

    def route(self, method: str, path: str, status: int = 200, **kwargs: Any) -> None:
        self._routes[(method, path)].append((status, kwargs))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)

        if request.url.path == CRUMB_ISSUER_PATH:
            self.crumbs_issued += 1
            if key not in self._routes:
                return httpx.Response(
                    200,
                    json={
                        "_class": "hudson.security.csrf.DefaultCrumbIssuer",
                        "crumbRequestField": CRUMB_FIELD,
                        "crumb": f"crumb-{self.crumbs_issued}",
                    },
                )

        queue = self._routes.get(key)
        if not queue:
            return httpx.Response(404, text="<html><body>Not Found</body></html>")
        status, kwargs = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status, **kwargs)

    def sent(self, path: str | None = None) -> list[httpx.Request]:
        """Requests sent so far, excluding crumb fetches unless asked for."""
        if path is not None:
            return [r for r in self.requests if r.url.path == path]
        return [r for r in self.requests if r.url.path != CRUMB_ISSUER_PATH]


@pytest.fixture
def fake() -> FakeJenkins:
    return FakeJenkins()


@pytest.fixture
def make_client(fake: FakeJenkins):
    """Factory for clients wired to the fake server (not yet initialized)."""

    def _make(base_url: str = BASE_URL, handler=None) -> JenkinsApiClient:
        return JenkinsApiClient(
            base_url=base_url,
            username="alice",
            api_token="11aa22bb33cc",
            transport=httpx.MockTransport(handler or fake.handler),
        )

    return _make
