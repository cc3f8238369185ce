"""Shared fixtures for the dredge test suite"""

import json
import logging

import httpx
import pytest

from config_manager import RegistryConfig
from debug_logger import LOG_FORMAT, NOISY_LOGGERS
from mock_data import MOCK_REGISTRY_URL, MockRegistryData
from registry_client import RegistryClient

REGISTRY_URL = "https://registry.test"
VERSION_HEADERS = {"Docker-Distribution-API-Version": "registry/2.0"}


class ScriptedRegistry:
    """Answers requests with a fixed list of responses, in order"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses[len(self.requests) - 1]
        if isinstance(response, Exception):
            raise response
        return response


def registry_response(status_code=200, body=None, headers=None, version=True):
    """Build a registry response, with the V2 version header by default"""
    all_headers = dict(VERSION_HEADERS) if version else {}
    all_headers.update(headers or {})
    if body is None:
        return httpx.Response(status_code, headers=all_headers)
    if isinstance(body, (bytes, str)):
        return httpx.Response(status_code, content=body, headers=all_headers)
    return httpx.Response(status_code, json=body, headers=all_headers)


@pytest.fixture
def config():
    return RegistryConfig(registry_url=REGISTRY_URL)


@pytest.fixture
def client_for(config):
    """Open a RegistryClient whose requests are served by a handler"""
    def factory(handler, **overrides):
        for key, value in overrides.items():
            setattr(config, key, value)
        return RegistryClient(config, transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def mock_registry():
    return MockRegistryData(page_size=2)


@pytest.fixture
async def mock_client(mock_registry):
    config = RegistryConfig(registry_url=MOCK_REGISTRY_URL)
    async with RegistryClient(config, transport=mock_registry.transport()) as client:
        yield client


@pytest.fixture
def config_file(tmp_path):
    """Write a config file pointing at the test registry"""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"registry_url": REGISTRY_URL}))
    return path


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo configure_logging() changes made by a test"""
    root = logging.getLogger()
    level = root.level
    library_levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    for handler in root.handlers[:]:
        if handler.formatter is not None and handler.formatter._fmt == LOG_FORMAT:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    for name, library_level in library_levels.items():
        logging.getLogger(name).setLevel(library_level)
