"""Shared pytest fixtures."""

import json

import pytest

from xbox_http import HttpClient
from xbox_state import StateStore
from xbox_types import Achievement, Identity, Reward, Token

NOW = 1_700_000_000


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None, content=b"", url=""):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.url = url
        self.text = json.dumps(payload) if payload is not None else content.decode("latin-1")

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """Routes requests to handlers registered per (method, url prefix)."""

    def __init__(self):
        self.routes = []
        self.calls = []

    def route(self, method, prefix, *responses):
        """Responses are returned in order; the last one repeats."""
        self.routes.append([method, prefix, list(responses)])

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        for route_method, prefix, responses in self.routes:
            if route_method == method and url.startswith(prefix):
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    response = response(method, url, kwargs)
                response.url = url
                return response
        return FakeResponse(404, {"error": "no route"}, url=url)

    def calls_to(self, prefix):
        return [c for c in self.calls if c[1].startswith(prefix)]


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def http(fake_session):
    return HttpClient(session=fake_session)


@pytest.fixture
def state(tmp_path):
    return StateStore(str(tmp_path / "config"))


@pytest.fixture
def identity():
    return Identity(gamertag="Gamer", xid="1", uhs="u", token=Token("T", NOW + 7200))


def make_achievement(achievement_id, unlocked=0, reward="10", scid="scid-1"):
    return Achievement(
        id=achievement_id, service_config_id=scid, name=f"Achievement {achievement_id}",
        progress_state="Achieved" if unlocked else "NotStarted",
        icon_url=f"https://images.example/{achievement_id}.png",
        unlocked_timestamp=unlocked, rewards=[Reward(reward)] if reward is not None else [])
