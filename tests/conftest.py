"""
Shared pytest fixtures for postdeploy tests.

This module provides common fixtures including:
- HttpMocker: httpx.MockTransport backed client factory with canned responses
- DnsMocker: In-memory name resolution for AddressResolver
- make_config: PostDeploymentConfig rooted in a temporary HOME
- write_script: Tiny executable shell scripts for ScriptRunner tests
"""

import os
import socket
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from postdeploy.config.provider import PostDeploymentConfig
from postdeploy.modules.control_plane import ControlPlaneClient, TokenSigner
from postdeploy.modules.resolver import AddressResolver

TEST_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


# =============================================================================
# HTTP Mocking Infrastructure
# =============================================================================

@dataclass
class CannedResponse:
    """Status codes returned in order; the last one repeats."""
    statuses: List[int]
    json: Optional[Any] = None
    calls: int = 0

    def next_status(self) -> int:
        index = min(self.calls, len(self.statuses) - 1)
        self.calls += 1
        return self.statuses[index]


class HttpMocker:
    """
    Intercept httpx requests made through a client factory.

    Usage:
        def test_post(http_mocker, make_client):
            http_mocker.register("POST", "/operations/settriggers", 200)
            client = make_client()
            await client.post("/operations/settriggers", "req-1", "[]")
            assert http_mocker.requests[0].headers["x-ms-request-id"] == "req-1"
    """

    def __init__(self):
        self._responses: List[Tuple[str, str, CannedResponse]] = []
        self.requests: List[httpx.Request] = []
        self.client_kwargs: List[Dict[str, Any]] = []
        self.clients: List[httpx.AsyncClient] = []
        self.default_status = 200

    def register(self, method: str, pattern: str, *statuses: int, json: Any = None) -> "HttpMocker":
        """Register status codes for requests whose URL contains pattern."""
        self._responses.append((method.upper(), pattern, CannedResponse(list(statuses) or [200], json)))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        for method, pattern, canned in self._responses:
            if request.method == method and pattern in url:
                return httpx.Response(canned.next_status(), json=canned.json)
        return httpx.Response(self.default_status)

    def client_factory(self, **kwargs) -> httpx.AsyncClient:
        """Drop-in replacement for httpx.AsyncClient."""
        self.client_kwargs.append(kwargs)
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler), **kwargs)
        self.clients.append(client)
        return client

    def requests_to(self, pattern: str) -> List[httpx.Request]:
        return [r for r in self.requests if pattern in str(r.url)]


@pytest.fixture
def http_mocker():
    """Provide a fresh HttpMocker."""
    return HttpMocker()


# =============================================================================
# DNS Mocking Infrastructure
# =============================================================================

class DnsMocker:
    """In-memory resolver; unknown names fail like a real lookup."""

    def __init__(self):
        self.records: Dict[str, List[str]] = {}
        self.lookups: List[str] = []

    def register(self, host: str, *addresses: str) -> "DnsMocker":
        self.records[host.lower()] = list(addresses)
        return self

    async def lookup(self, host: str) -> List[str]:
        self.lookups.append(host)
        if host.lower() not in self.records:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return list(self.records[host.lower()])


@pytest.fixture
def dns_mocker():
    """Provide a fresh DnsMocker."""
    return DnsMocker()


# =============================================================================
# Configuration and Clients
# =============================================================================

@pytest.fixture
def make_config(tmp_path):
    """Factory for configurations rooted in tmp_path."""
    def _make(**overrides) -> PostDeploymentConfig:
        values = {
            "home": str(tmp_path / "home"),
            "temp_dir": str(tmp_path / "temp"),
            "http_host": "mysite.scm.azurewebsites.net",
            "auth_encryption_key": TEST_KEY_HEX,
        }
        values.update(overrides)
        return PostDeploymentConfig(**values)

    return _make


@pytest.fixture
def signer():
    """Token signer with a fixed test key."""
    return TokenSigner(TEST_KEY_HEX)


@pytest.fixture
def make_client(make_config, http_mocker, dns_mocker, signer):
    """Factory for ControlPlaneClients wired to the mockers."""
    def _make(config: Optional[PostDeploymentConfig] = None, **overrides) -> ControlPlaneClient:
        config = config or make_config(**overrides)
        if config.http_host and config.http_host.lower() not in dns_mocker.records:
            dns_mocker.register(config.http_host, "10.0.0.1")
        return ControlPlaneClient(
            config,
            signer=signer,
            resolver=AddressResolver(config.home_stamp, lookup=dns_mocker.lookup),
            client_factory=http_mocker.client_factory,
        )

    return _make


# =============================================================================
# Script Helpers
# =============================================================================

@pytest.fixture
def write_script(tmp_path):
    """Write an executable /bin/sh script and return its path."""
    def _write(name: str, body: str, directory: Optional[Path] = None) -> Path:
        directory = directory or tmp_path / "scripts"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


requires_posix = pytest.mark.skipif(
    sys.platform == "win32" or os.name != "posix",
    reason="Requires a POSIX shell",
)


# =============================================================================
# Test Markers Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "subprocess: Tests that launch real child processes"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take a long time to run"
    )
