import asyncio

import pytest

from gamecompare.core.errors import ValidationError
from gamecompare.core.search import SearchEngine
from gamecompare.utils.game_utils import to_iso

from conftest import make_game


def store(db, clock, game):
    now = to_iso(clock())
    game_id, _ = db.find_or_create_game(game, now)
    db.upsert_offer(game_id, game["platform_data"], now)
    db.refresh_game_platforms(game_id, now)
    return game_id


@pytest.fixture
def engine(db, clock):
    return SearchEngine(db, clock=clock)


def names(response):
    return [game["name"] for game in response["results"]]


def test_filters_are_conjunctive(db, clock, engine):
    store(db, clock, make_game("Quest G1", "steam", price=10.0))
    store(db, clock, make_game("Quest G2", "epic", price=50.0))

    response = engine.advanced_search("quest", {"platforms": ["steam"], "priceRange": {"max": 20}})

    assert names(response) == ["Quest G1"]


def test_price_range_is_inclusive(db, clock, engine):
    store(db, clock, make_game("Quest A", "steam", price=10.0))
    store(db, clock, make_game("Quest B", "steam", price=20.0))
    store(db, clock, make_game("Quest C", "steam", price=30.0))

    response = engine.advanced_search("quest", {"priceRange": {"min": 10, "max": 20}})

    assert names(response) == ["Quest A", "Quest B"]


def test_results_are_grouped_by_game_with_price_aggregates(db, clock, engine):
    store(db, clock, make_game("Hades", "steam", price=24.99))
    store(db, clock, make_game("Hades", "epic", price=19.99))
    store(db, clock, make_game("Hades", "gog", price=None))

    response = engine.advanced_search("hades")

    assert len(response["results"]) == 1
    hades = response["results"][0]
    assert hades["platformCount"] == 3
    assert hades["lowestPrice"] == 19.99
    assert hades["highestPrice"] == 24.99
    assert {p["platform"] for p in hades["platforms"]} == {"steam", "epic", "gog"}
    assert response["pagination"] == {"page": 1, "limit": 20, "total": 1}
    assert "responseTimeMs" in response["performance"]


def test_matches_description_and_developer_case_insensitively(db, clock, engine):
    store(db, clock, make_game("Alpha", "steam", description="A ROGUELIKE dungeon crawl"))
    store(db, clock, make_game("Beta", "steam", developer="Rogue Studio"))
    store(db, clock, make_game("Gamma", "steam"))

    assert names(engine.advanced_search("rogue")) == ["Alpha", "Beta"]


def test_genre_tag_sale_and_release_filters(db, clock, engine):
    store(db, clock, make_game("Space One", "steam", genres=["Strategy"], tags=["Co-op"],
                               release_date="2020-05-01", discount_percent=10))
    store(db, clock, make_game("Space Two", "steam", genres=["Action"], tags=["Co-op"],
                               release_date="2022-05-01", discount_percent=0))
    store(db, clock, make_game("Space Three", "steam", genres=["Puzzle"], tags=["Solo"],
                               release_date="2023-05-01", discount_percent=20))

    assert names(engine.advanced_search("space", {"genres": ["strategy", "action"]})) == ["Space One", "Space Two"]
    assert names(engine.advanced_search("space", {"tags": ["co-op"], "onSale": True})) == ["Space One"]
    assert names(engine.advanced_search("space", {"releaseDate": {"from": "2021-01-01", "to": "2022-12-31"}})) == ["Space Two"]


def test_sorting(db, clock, engine):
    store(db, clock, make_game("Sky Mid", "steam", price=20.0, discount_percent=5, release_date="2019-01-01"))
    store(db, clock, make_game("Sky Unpriced", "steam", price=None))
    store(db, clock, make_game("Sky Low", "steam", price=5.0, discount_percent=60, release_date="2021-01-01"))
    store(db, clock, make_game("Sky", "steam", price=40.0))

    assert names(engine.advanced_search("sky", sort="price_low_to_high")) == ["Sky Low", "Sky Mid", "Sky", "Sky Unpriced"]
    assert names(engine.advanced_search("sky", sort="price_high_to_low")) == ["Sky", "Sky Mid", "Sky Low", "Sky Unpriced"]
    assert names(engine.advanced_search("sky", sort="discount"))[0] == "Sky Low"
    assert names(engine.advanced_search("sky", sort="release_date"))[:2] == ["Sky Low", "Sky Mid"]
    assert names(engine.advanced_search("SKY"))[0] == "Sky"


def test_pagination_offsets_rows(db, clock, engine):
    for i in range(5):
        store(db, clock, make_game(f"Page {i}", "steam"))

    response = engine.advanced_search("page", page=2, limit=2)

    assert names(response) == ["Page 2", "Page 3"]
    assert response["pagination"]["page"] == 2


@pytest.mark.parametrize("kwargs", [
    {"query": ""},
    {"query": "x" * 501},
    {"query": "ok", "page": 0},
    {"query": "ok", "limit": 0},
    {"query": "ok", "limit": 101},
    {"query": "ok", "sort": "popularity"},
    {"query": "ok", "filters": {"platforms": ["origin"]}},
    {"query": "ok", "filters": {"priceRange": {"min": -1}}},
])
def test_invalid_input_is_rejected_before_io(db, engine, kwargs):
    with pytest.raises(ValidationError):
        engine.advanced_search(**kwargs)
    assert db.get_popular_search(kwargs["query"]) is None


def test_search_increments_popular_counter(db, engine):
    engine.advanced_search("zelda")
    engine.advanced_search("zelda")
    assert db.get_popular_search("zelda")["search_count"] == 2


def test_popularity_failure_does_not_fail_search(db, clock, engine, monkeypatch):
    store(db, clock, make_game("Zelda", "steam"))

    def broken(query, searched_at):
        raise RuntimeError("disk full")

    monkeypatch.setattr(db, "record_search", broken)

    assert names(engine.advanced_search("zelda")) == ["Zelda"]


def test_autocomplete_lists_game_names_before_popular_queries(db, clock, engine):
    store(db, clock, make_game("Portal", "steam"))
    store(db, clock, make_game("Portal 2", "steam"))
    for query in ["portal", "portal", "portal speedrun", "Portal"]:
        db.record_search(query, to_iso(clock()))

    suggestions = engine.get_autocomplete_suggestions("port")["suggestions"]

    assert suggestions[:2] == ["Portal", "Portal 2"]
    assert "portal" in suggestions and "portal speedrun" in suggestions
    assert len(suggestions) == len(set(suggestions))
    assert len(engine.get_autocomplete_suggestions("port", limit=3)["suggestions"]) == 3

    with pytest.raises(ValidationError):
        engine.get_autocomplete_suggestions("port", limit=21)


def test_trending_uses_recent_searches_then_backfills(db, clock, engine):
    doom = store(db, clock, make_game("Doom", "steam"))
    store(db, clock, make_game("Doom Eternal", "epic"))
    quake = store(db, clock, make_game("Quake", "gog"))
    for _ in range(3):
        db.record_search("doom", to_iso(clock()))

    trending = engine.get_trending("week", limit=3)

    ids = [game["id"] for game in trending["games"]]
    assert ids[0] == doom
    assert trending["games"][0]["searchCount"] == 3
    assert quake in ids
    assert trending["count"] == 3
    assert len(set(ids)) == 3


def test_trending_ignores_old_searches_and_applies_platform_filter(db, clock, engine):
    store(db, clock, make_game("Doom", "steam"))
    db.record_search("doom", to_iso(clock()))
    clock.advance(days=8)

    assert engine.get_trending("week")["games"] == []

    store(db, clock, make_game("Quake", "gog"))
    store(db, clock, make_game("Hexen", "steam"))
    trending = engine.get_trending("month", platforms=["gog"])
    assert [game["name"] for game in trending["games"]] == ["Quake"]

    with pytest.raises(ValidationError):
        engine.get_trending("year")
    with pytest.raises(ValidationError):
        engine.get_trending("week", limit=51)


class FakeManager:
    def __init__(self):
        self.calls = []

    async def search_all_platforms(self, query, filters=None, platforms=None):
        self.calls.append((query, filters, platforms))
        return {
            "steam": [make_game(f"Live {i}", "steam") for i in range(7)],
            "gog": [],
        }


def test_search_all_tops_up_with_live_results(db, clock):
    store(db, clock, make_game("Live Local", "steam"))
    manager = FakeManager()
    engine = SearchEngine(db, platform_manager=manager, clock=clock)

    results = asyncio.run(engine.search_all("live"))

    assert results[0]["name"] == "Live Local"
    assert results[0]["source"] == "local"
    live = [r for r in results if r["source"] == "live"]
    assert len(live) == 5
    assert manager.calls[0][1] == {"limit": 5}


def test_search_all_skips_live_search_with_enough_local_hits(db, clock):
    for i in range(10):
        store(db, clock, make_game(f"Local {i}", "epic", price=5.0 + i))
    manager = FakeManager()
    engine = SearchEngine(db, platform_manager=manager, clock=clock)

    results = asyncio.run(engine.search_all("local"))
    assert len(results) == 10
    assert manager.calls == []

    cheap = asyncio.run(engine.search_all(platforms=["epic"], price_range={"max": 7}))
    assert [r["name"] for r in cheap] == ["Local 0", "Local 1", "Local 2"]


def test_platform_availability_lists_offers(db, clock, engine):
    game_id = store(db, clock, make_game("Celeste", "steam", price=19.99))
    store(db, clock, make_game("Celeste", "gog", price=17.99))

    availability = engine.get_platform_availability("celes")

    assert {row["platform"] for row in availability} == {"steam", "gog"}
    assert all(row["gameId"] == game_id and row["isAvailable"] for row in availability)


def test_tracking_and_library_crud(db, clock, engine):
    game_id = store(db, clock, make_game("Celeste", "steam"))

    engine.track_game(7, game_id, 9.99)
    engine.track_game(7, game_id, 4.99)
    assert [(g["name"], g["target_price"]) for g in engine.get_tracked_games(7)] == [("Celeste", 4.99)]
    assert engine.untrack_game(7, game_id) is True
    assert engine.get_tracked_games(7) == []

    engine.add_to_library(7, game_id)
    engine.add_to_library(7, game_id)
    assert [g["name"] for g in engine.get_library(7)] == ["Celeste"]
    assert engine.remove_from_library(7, game_id) is True
    assert engine.remove_from_library(7, game_id) is False

    with pytest.raises(ValidationError):
        engine.add_to_library(7, 9999)

    db.delete_game(game_id)
    assert db.count_offers() == 0


def test_search_all_keeps_offerless_games_when_price_range_has_no_bounds(db, clock, engine):
    db.find_or_create_game(make_game("Unreleased Thing"), to_iso(clock()))
    store(db, clock, make_game("Released Thing", "gog", price=9.99))

    results = asyncio.run(engine.search_all("Thing", price_range={"min": None, "max": None}))

    assert [r["name"] for r in results] == ["Unreleased Thing", "Released Thing"]
    assert results[0]["offers"] == []

    bounded = asyncio.run(engine.search_all("Thing", price_range={"max": 20}))
    assert [r["name"] for r in bounded] == ["Released Thing"]
