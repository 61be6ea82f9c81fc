import logging
from typing import Any, Callable, Dict, List

import httpx
import pytest

import vcu_connection


class MockVMCloud:
    """Serves the CSP token exchange and the two VMC collections."""

    def __init__(self) -> None:
        self.access_token = "access-123"
        self.deployments: Any = []
        self.subscriptions: Any = []
        self.fail_paths: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path], text="boom")
        if path == vcu_connection.TOKEN_EXCHANGE_PATH:
            if b"refresh_token=good-token" not in request.content:
                return httpx.Response(400, json={"message": "invalid_grant"})
            return httpx.Response(
                200,
                json={"access_token": self.access_token, "expires_in": 1799, "token_type": "bearer"},
            )
        if request.headers.get("csp-auth-token") != self.access_token:
            return httpx.Response(401, json={"error_messages": ["Unauthorized"]})
        if path.endswith("/deployments/usage"):
            return httpx.Response(200, json=self.deployments)
        if path.endswith("/subscriptions"):
            return httpx.Response(200, json=self.subscriptions)
        return httpx.Response(404, json={"error": "not_found", "path": path})


@pytest.fixture
def cloud() -> MockVMCloud:
    return MockVMCloud()


@pytest.fixture
def client_factory(cloud: MockVMCloud) -> Callable[..., httpx.Client]:
    def build_mock_client(headers: Dict[str, str], user_agent: str = "test", http2: bool = True) -> httpx.Client:
        return httpx.Client(headers=headers, transport=httpx.MockTransport(cloud.handler))

    return build_mock_client


@pytest.fixture(autouse=True)
def reset_connection(monkeypatch: Any) -> None:
    monkeypatch.setattr(vcu_connection, "_connection", None)


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("vcu-tests")


@pytest.fixture
def connected(monkeypatch: Any, client_factory: Callable[..., httpx.Client], logger: logging.Logger):
    monkeypatch.setattr("vcu_connection.create_http_client", client_factory)
    monkeypatch.setattr("deployment_report.create_http_client", client_factory)
    monkeypatch.setattr("subscription_report.create_http_client", client_factory)
    return vcu_connection.connect("good-token", "org-1", logger=logger)
