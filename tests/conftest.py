"""Pytest fixtures shared across the test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from gamecompare.core.cache import TTLCache
from gamecompare.core.database import Database
from gamecompare.models.game import NormalizedGame, TRI_TRUE, TRI_UNKNOWN


class FakeClock:
    """Datetime clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeResponse:
    def __init__(self, payload=None, status=200, reason='OK'):
        self.payload = payload
        self.status = status
        self.reason = reason

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """
    Stands in for aiohttp.ClientSession. `handler` is either a list of
    responses/exceptions consumed in order, or a callable
    handler(method, url, kwargs) returning one.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        if callable(self.handler):
            outcome = self.handler(method, url, kwargs)
        else:
            outcome = self.handler.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_game(name, platform='steam', platform_id=None, price=19.99, original_price=None,
              discount_percent=0, available=TRI_TRUE, drm_free=TRI_UNKNOWN, **fields) -> NormalizedGame:
    game = NormalizedGame(
        name=name,
        description=fields.pop('description', f"{name} description"),
        short_description=None,
        cover_image=fields.pop('cover_image', None),
        genres=fields.pop('genres', []),
        tags=fields.pop('tags', []),
        developer=fields.pop('developer', None),
        publisher=fields.pop('publisher', None),
        release_date=fields.pop('release_date', None),
        platform_data={
            'platform': platform,
            'platform_id': platform_id or f"{platform}-{name.lower().replace(' ', '-')}",
            'price': price,
            'original_price': original_price if original_price is not None else price,
            'discount_percent': discount_percent,
            'currency': 'USD',
            'url': f"https://example.com/{platform}/{name}",
            'image_url': None,
            'available': available,
            'drm_free': drm_free,
            'metadata': {},
        },
    )
    game.update(fields)
    return game


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "games.db"))


@pytest.fixture
def cache():
    return TTLCache()


@pytest.fixture
def sleep():
    return RecordingSleep()
