import asyncio

import pytest

from gamecompare.config import STEAM_APP_LIST_URL, STEAM_APP_DETAILS_URL, EPIC_GAMES_API_URL
from gamecompare.core.errors import TransportError
from gamecompare.sources.epic_games import EpicGamesSource
from gamecompare.sources.gog import GogSource
from gamecompare.sources.steam import SteamSource

from conftest import FakeResponse, FakeSession

STEAM_APPS = {
    "applist": {"apps": [
        {"appid": 10, "name": "Star Freighter"},
        {"appid": 20, "name": "Star Freighter 2"},
        {"appid": 30, "name": "Garden Sim"},
        {"appid": 40, "name": "   "},
    ]}
}


def steam_handler(method, url, kwargs):
    if url == STEAM_APP_LIST_URL:
        return FakeResponse(STEAM_APPS)
    if url == STEAM_APP_DETAILS_URL:
        app_id = kwargs["params"]["appids"]
        if app_id == "20":
            return FakeResponse({app_id: {"success": False}})
        return FakeResponse({app_id: {"success": True, "data": {
            "name": f"App {app_id}",
            "price_overview": {"currency": "USD", "initial": 1999, "final": 999, "discount_percent": 50},
        }}})
    return FakeResponse(status=404, reason="Not Found")


def test_steam_search_matches_names_and_fetches_details(cache, sleep):
    session = FakeSession(steam_handler)
    source = SteamSource(session, cache, sleep=sleep)

    results = asyncio.run(source.search_games("star"))

    assert [g["platform_data"]["platform_id"] for g in results] == ["10", "20"]
    assert results[0]["platform_data"]["price"] == 9.99
    # Unsuccessful appdetails leaves the app-list name and unknown availability
    assert results[1]["name"] == "Star Freighter 2"
    assert results[1]["platform_data"]["available"] == "unknown"


def test_steam_search_is_served_from_cache_on_repeat(cache, sleep):
    session = FakeSession(steam_handler)
    source = SteamSource(session, cache, sleep=sleep)

    asyncio.run(source.search_games("star"))
    calls_after_first = len(session.calls)
    asyncio.run(source.search_games("star"))

    assert len(session.calls) == calls_after_first
    assert any(key.startswith("steam:search:") for key in cache._entries)


def test_steam_sync_batch_skips_nameless_apps(cache, sleep):
    source = SteamSource(FakeSession(steam_handler), cache, sleep=sleep)
    batch = asyncio.run(source.fetch_sync_batch())
    assert [app["appid"] for app in batch] == ["10", "20", "30"]


def test_steam_details_returns_none_when_unsuccessful(cache, sleep):
    source = SteamSource(FakeSession(steam_handler), cache, sleep=sleep)
    assert asyncio.run(source.get_game_details("20")) is None
    assert asyncio.run(source.get_game_details("30"))["name"] == "App 30"


def test_sync_without_engine_is_an_error(cache):
    source = SteamSource(FakeSession([]), cache)
    with pytest.raises(RuntimeError):
        asyncio.run(source.sync_games(force=True))


# --- Epic ---

EPIC_ELEMENT = {
    "id": "abc",
    "title": "Hollow Lands",
    "productSlug": "hollow-lands",
    "keyImages": [],
    "price": {"totalPrice": {"originalPrice": 2000, "discountPrice": 1000, "currencyCode": "USD"}},
}


def test_epic_search_posts_graphql_with_keywords(cache, sleep):
    payload = {"data": {"Catalog": {"searchStore": {"elements": [EPIC_ELEMENT, {"id": "no-title"}]}}}}
    session = FakeSession([FakeResponse(payload)])
    source = EpicGamesSource(session, cache, sleep=sleep)

    results = asyncio.run(source.search_games("hollow", {"limit": 3}))

    assert len(results) == 1
    assert results[0]["platform_data"]["discount_percent"] == 50
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == EPIC_GAMES_API_URL
    assert call["json"]["variables"]["keywords"] == "hollow"
    assert call["json"]["variables"]["count"] == 3


def test_epic_graphql_errors_raise_transport_error(cache, sleep):
    session = FakeSession([FakeResponse({"data": None, "errors": [{"message": "Throttled"}]})])
    source = EpicGamesSource(session, cache, sleep=sleep)

    with pytest.raises(TransportError, match="Throttled"):
        asyncio.run(source.search_games("anything"))


def test_epic_details_match_by_id_or_slug(cache, sleep):
    payload = {"data": {"Catalog": {"searchStore": {"elements": [EPIC_ELEMENT]}}}}
    session = FakeSession(lambda method, url, kwargs: FakeResponse(payload))
    source = EpicGamesSource(session, cache, sleep=sleep)

    assert asyncio.run(source.get_game_details("abc"))["name"] == "Hollow Lands"
    assert asyncio.run(source.get_game_details("hollow-lands"))["name"] == "Hollow Lands"
    assert asyncio.run(source.get_game_details("missing")) is None


# --- GOG ---

def test_gog_search_reads_embedded_items(cache, sleep):
    items = {"_embedded": {"items": [
        {"id": 1, "title": "Old Castle", "price": {"finalAmount": 5, "originalAmount": 10, "discountPercent": 50}},
    ]}}
    session = FakeSession([FakeResponse(items)])
    source = GogSource(session, cache, sleep=sleep)

    results = asyncio.run(source.search_games("castle"))

    assert results[0]["platform_data"]["discount_percent"] == 50
    assert session.calls[0]["params"] == {"page": 1, "limit": 5, "search": "castle"}


def test_gog_details_not_found_returns_none(cache, sleep):
    session = FakeSession(lambda method, url, kwargs: FakeResponse(status=404, reason="Not Found"))
    source = GogSource(session, cache, max_retries=1, sleep=sleep)

    assert asyncio.run(source.get_game_details("999")) is None


def test_gog_details_server_error_propagates(cache, sleep):
    session = FakeSession(lambda method, url, kwargs: FakeResponse(status=500, reason="Server Error"))
    source = GogSource(session, cache, max_retries=2, sleep=sleep)

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(source.get_game_details("999"))
    assert excinfo.value.status == 500
    assert sleep.delays == [1.0]
