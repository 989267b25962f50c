"""
Pytest configuration and shared fixtures.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Union

import pytest

from photo_import.auth import StaticTokenProvider
from photo_import.graph_client import GraphPhotosClient


class FakeResponse:
    """Just enough of requests.Response for the client code."""

    def __init__(self, status_code: int = 200, json_body: Any = None, text: Optional[str] = None,
                 reason: str = "OK"):
        self.status_code = status_code
        self.reason = reason
        if text is None:
            text = json.dumps(json_body) if json_body is not None else ""
        self.text = text
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        return json.loads(self.text)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


@dataclass
class RecordedCall:
    method: str
    url: str
    headers: dict
    json: Any = None
    data: Any = None
    kwargs: dict = field(default_factory=dict)


class FakeSession:
    """Returns scripted responses in order and records each request."""

    def __init__(self, responses: List[Union[FakeResponse, Callable[[RecordedCall], FakeResponse]]] = ()):
        self._responses = list(responses)
        self.calls: List[RecordedCall] = []

    def queue(self, *responses):
        self._responses.extend(responses)

    def request(self, method, url, headers=None, **kwargs):
        call = RecordedCall(
            method=method,
            url=url,
            headers=dict(headers or {}),
            json=kwargs.pop("json", None),
            data=kwargs.pop("data", None),
            kwargs=kwargs,
        )
        self.calls.append(call)
        if not self._responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self._responses.pop(0)
        return response(call) if callable(response) else response


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def tokens():
    refreshed = iter(["token-2", "token-3", "token-4"])
    provider = StaticTokenProvider("token-1", refresher=lambda: next(refreshed))
    return provider


@pytest.fixture
def client(tokens, session):
    return GraphPhotosClient(tokens, base_url="https://graph.test", session=session)
