"""Shared fakes: an in-memory stand-in for ``requests.Session``.

Adapters accept an injectable session, so tests never touch the network.
Routes are matched by URL substring in insertion order; a route value may be
a response, an exception instance to raise, or ``callable(url, params)``
returning either.
"""

import json

import pytest
import requests


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self.payload = payload
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self):
        if self.payload is None:
            return json.loads(self.text)
        return self.payload


class FakeSession:
    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": headers, "timeout": timeout})
        for fragment, handler in self.routes.items():
            if fragment in url:
                result = handler(url, params or {}) if callable(handler) else handler
                if isinstance(result, BaseException):
                    raise result
                return result
        raise requests.ConnectionError(f"no fake route for {url}")


@pytest.fixture
def fake_session():
    """Factory: ``fake_session({"/quote": FakeResponse({...})})``."""
    return FakeSession


@pytest.fixture
def response():
    return FakeResponse
