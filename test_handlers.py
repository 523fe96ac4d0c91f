"""
End-to-end tests of the invocation handler: work modes, envelopes and
status codes, running on a temporary SQLite store and canned pages.
"""

import json
from datetime import datetime, timedelta, timezone

import aiohttp
import pytest

from rankwatch.models import SnapshotEntry
from plugins.royalroad.fetcher import RoyalRoadFetcher
from plugins.royalroad.handlers import BadRequest, handle, parse_event
from plugins.royalroad.sinks import SqliteFictionStore
from conftest import FICTION_HTML, RISING_STARS_HTML, FakeHttp


def not_found():
    return aiohttp.ClientResponseError(None, (), status=404, message="Not Found")


@pytest.fixture
async def store(settings):
    store = SqliteFictionStore(settings.database.path, settings.freshness)
    await store.connect()
    yield store
    await store.close()


async def invoke(event, settings, store, clock, sleep, pages=None, remaining_ms=60000, latency=0.0):
    fetcher = RoyalRoadFetcher(
        settings.scraping, http=FakeHttp(pages or {}, clock, latency), sleep=sleep
    )
    result = await handle(
        event, remaining_ms, settings=settings, store=store, fetcher=fetcher, sleep=sleep, clock=clock
    )
    assert result["headers"]["Content-Type"] == "application/json"
    return result["statusCode"], json.loads(result["body"]), fetcher


# --------------------------------------------------------------------------- #
# single fiction
# --------------------------------------------------------------------------- #
async def test_fiction_mode_creates_fiction(settings, store, clock, sleep):
    pages = {"/fiction/12345": FICTION_HTML}

    status, body, _ = await invoke({"body": json.dumps({"royalroadId": "12345"})}, settings, store, clock, sleep, pages)

    assert status == 200
    assert body["success"] is True
    assert body["data"]["royalroadId"] == "12345"
    assert body["data"]["title"] == "The Wandering Inn & Friends"
    assert body["data"]["author"]["name"] == "pirateaba"
    assert "executionTime" in body
    stored = await store.get_fiction_by_key("12345")
    assert stored["pages"] == 1234
    assert len(await store.db.fetch_all("SELECT * FROM fiction_history")) == 1


async def test_fiction_mode_returns_existing(settings, store, clock, sleep):
    fiction_id = await store.create_fiction({"royalroad_id": "12345", "title": "Known"})

    status, body, fetcher = await invoke(
        {"pathParameters": {"royalroadId": "12345"}}, settings, store, clock, sleep
    )

    assert status == 200
    assert body["data"]["message"] == "Fiction already exists"
    assert body["data"]["fiction"]["id"] == fiction_id
    assert fetcher.http.requests == []


async def test_fiction_mode_upstream_404(settings, store, clock, sleep):
    status, body, _ = await invoke(
        {"mode": "fiction", "royalroadId": "5"}, settings, store, clock, sleep, {"/fiction/5": not_found()}
    )

    assert status == 404
    assert body["success"] is False
    assert "not found" in body["error"]
    assert await store.get_fiction_by_key("5") is None


async def test_fiction_mode_requires_id(settings, store, clock, sleep):
    status, body, _ = await invoke({"body": {"mode": "fiction"}}, settings, store, clock, sleep)

    assert status == 400
    assert body["error"] == "royalroadId is required"


async def test_unknown_mode_is_bad_request(settings, store, clock, sleep):
    status, body, _ = await invoke({"queryStringParameters": {"mode": "everything"}}, settings, store, clock, sleep)

    assert status == 400
    assert body["success"] is False


# --------------------------------------------------------------------------- #
# fiction history
# --------------------------------------------------------------------------- #
async def test_fiction_history_tolerates_item_failures(settings, store, clock, sleep):
    ids = [await store.create_fiction({"royalroad_id": rid}) for rid in ("1", "2", "3")]
    pages = {
        "/fiction/1": FICTION_HTML,
        "/fiction/2": not_found(),
        "/fiction/3": aiohttp.ClientResponseError(None, (), status=429, message="Too Many Requests"),
    }

    status, body, _ = await invoke({"mode": "fiction-history"}, settings, store, clock, sleep, pages)

    assert status == 200
    assert body["success"] is True
    assert (body["processedCount"], body["totalCount"], body["remainingCount"]) == (2, 3, 1)
    assert body["data"]["savedCount"] == 1
    assert body["data"]["goneCount"] == 1
    assert [f["key"] for f in body["data"]["failures"]] == ["3"]
    assert sleep.calls == [0.1, 0.1, 0.1]

    rows = await store.db.fetch_all("SELECT fiction_id FROM fiction_history")
    assert [r["fiction_id"] for r in rows] == [ids[0]]
    failed = await store.db.fetch_all("SELECT fiction_id, code FROM failed_attempts")
    assert [(r["fiction_id"], r["code"]) for r in failed] == [(ids[2], "HTTP_429")]


async def test_fiction_history_does_not_refetch_gone_fictions(settings, store, clock, sleep):
    await store.create_fiction({"royalroad_id": "1"})
    pages = {"/fiction/1": not_found()}

    requests = []
    for _ in range(3):
        status, body, fetcher = await invoke({"mode": "fiction-history"}, settings, store, clock, sleep, pages)
        assert status == 200
        requests.extend(fetcher.http.requests)

    assert requests == ["/fiction/1"]
    assert body["data"]["message"] == "Nothing due for update"
    assert (await store.get_fiction_by_key("1"))["gone_at"] is not None


async def test_fiction_history_partial_run_reports_remaining(settings, store, clock, sleep):
    for rid in ("1", "2", "3"):
        await store.create_fiction({"royalroad_id": rid})
    pages = {f"/fiction/{rid}": FICTION_HTML for rid in ("1", "2", "3")}

    status, body, fetcher = await invoke(
        {"mode": "fiction-history"}, settings, store, clock, sleep, pages, remaining_ms=1500, latency=1.0
    )

    assert status == 200
    assert body["success"] is True
    assert (body["processedCount"], body["remainingCount"]) == (2, 1)
    assert fetcher.http.requests == ["/fiction/1", "/fiction/2"]
    assert sleep.calls == pytest.approx([0.1, 0.1])
    assert body["data"]["skippedCount"] == 1


async def test_fiction_history_nothing_due(settings, store, clock, sleep):
    status, body, _ = await invoke({"mode": "fiction-history"}, settings, store, clock, sleep)

    assert status == 200
    assert body["data"]["message"] == "Nothing due for update"
    assert (body["processedCount"], body["totalCount"], body["remainingCount"]) == (0, 0, 0)


# --------------------------------------------------------------------------- #
# rising stars
# --------------------------------------------------------------------------- #
RS_PAGES = {
    "/fictions/rising-stars": RISING_STARS_HTML,
    "/fictions/rising-stars/fantasy": RISING_STARS_HTML,
}


async def test_rising_stars_all_captures_due_genres(settings, store, clock, sleep):
    status, body, _ = await invoke({"mode": "rising-stars-all"}, settings, store, clock, sleep, RS_PAGES)

    assert status == 200
    assert (body["processedCount"], body["totalCount"]) == (2, 2)
    assert body["data"]["savedCount"] == 6
    assert body["data"]["created"] == 3

    rows = await store.db.fetch_all("SELECT DISTINCT captured_at FROM rising_stars")
    assert len(rows) == 1
    created = await store.get_fiction_by_key("222")
    assert created["title"] == "Second"
    assert created["author_name"] == "Unknown Author"

    status, body, _ = await invoke({"mode": "rising-stars-all"}, settings, store, clock, sleep, RS_PAGES)
    assert body["data"]["message"] == "Nothing due for update"


async def test_rising_stars_genre_failure_does_not_abort(settings, store, clock, sleep):
    pages = {
        "/fictions/rising-stars": aiohttp.ServerDisconnectedError(),
        "/fictions/rising-stars/fantasy": RISING_STARS_HTML,
    }

    status, body, _ = await invoke({"mode": "rising-stars-all"}, settings, store, clock, sleep, pages)

    assert status == 200
    assert (body["processedCount"], body["remainingCount"]) == (1, 1)
    assert body["data"]["failures"][0]["code"] == "ECONNRESET"
    assert [e.genre for e in await store.get_latest_snapshot()] == ["fantasy"] * 3


async def test_rising_stars_main_and_genre_modes(settings, store, clock, sleep):
    status, body, fetcher = await invoke({"mode": "rising-stars-main"}, settings, store, clock, sleep, RS_PAGES)
    assert status == 200
    assert fetcher.http.requests == ["/fictions/rising-stars"]

    status, body, fetcher = await invoke(
        {"mode": "rising-stars-genre", "genre": "fantasy"}, settings, store, clock, sleep, RS_PAGES
    )
    assert status == 200
    assert fetcher.http.requests == ["/fictions/rising-stars/fantasy"]
    # fictions were created by the first run
    assert body["data"]["created"] == 0

    status, body, _ = await invoke({"mode": "rising-stars-genre"}, settings, store, clock, sleep)
    assert status == 400


# --------------------------------------------------------------------------- #
# reads
# --------------------------------------------------------------------------- #
async def test_movement_mode(settings, store, clock, sleep):
    today = datetime.now(tz=timezone.utc)
    yesterday = today - timedelta(days=1)
    await store.append_snapshot_entries(
        [SnapshotEntry(entity_id=i, genre="main", position=i, captured_at=yesterday) for i in range(1, 21)]
        + [SnapshotEntry(entity_id=i, genre="main", position=i - 1, captured_at=today) for i in range(2, 22)]
    )

    status, body, _ = await invoke(
        {"body": json.dumps({"mode": "movement", "followedId": "10"})}, settings, store, clock, sleep
    )

    assert status == 200
    rows = body["data"]["movements"]
    assert len(rows) == 13
    followed = next(r for r in rows if r["entityId"] == 10)
    assert (followed["currentPosition"], followed["previousPosition"], followed["delta"]) == (9, 10, 1)

    status, body, _ = await invoke({"mode": "movement"}, settings, store, clock, sleep)
    rows = body["data"]["movements"]
    assert len(rows) == 21
    assert rows[-1] == {**rows[-1], "entityId": 1, "isDropped": True}
    assert [r["isNew"] for r in rows if r["entityId"] == 21] == [True]


async def test_movement_mode_ignores_older_days(settings, store, clock, sleep):
    today = datetime.now(tz=timezone.utc)
    await store.append_snapshot_entries(
        [
            SnapshotEntry(entity_id=50, genre="main", position=1, captured_at=today - timedelta(days=5)),
            SnapshotEntry(entity_id=1, genre="main", position=1, captured_at=today - timedelta(days=2)),
            SnapshotEntry(entity_id=2, genre="main", position=2, captured_at=today - timedelta(days=2)),
            SnapshotEntry(entity_id=2, genre="main", position=1, captured_at=today),
            SnapshotEntry(entity_id=1, genre="main", position=2, captured_at=today),
        ]
    )

    status, body, _ = await invoke({"mode": "movement"}, settings, store, clock, sleep)

    assert status == 200
    rows = body["data"]["movements"]
    assert [(r["entityId"], r["delta"]) for r in rows] == [(2, 1), (1, -1)]


async def test_position_mode(settings, store, clock, sleep):
    await invoke({"mode": "rising-stars-all"}, settings, store, clock, sleep, RS_PAGES)

    status, body, _ = await invoke({"mode": "position", "royalroadId": "333"}, settings, store, clock, sleep)

    assert status == 200
    assert body["data"]["isOnMain"] is True
    assert body["data"]["mainPosition"] == 4
    assert body["data"]["royalroadId"] == "333"

    status, _, _ = await invoke({"mode": "position", "royalroadId": "404"}, settings, store, clock, sleep)
    assert status == 404


# --------------------------------------------------------------------------- #
# failures
# --------------------------------------------------------------------------- #
async def test_missing_configuration_is_500(tmp_path, monkeypatch, clock, sleep):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("RANKWATCH_DB_PATH", raising=False)

    result = await handle({"mode": "fiction-history"}, 60000, sleep=sleep, clock=clock)

    assert result["statusCode"] == 500
    body = json.loads(result["body"])
    assert body["success"] is False
    assert "database.path" in body["error"]


async def test_unopenable_store_is_500(settings, tmp_path, clock, sleep):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    bad_store = SqliteFictionStore(str(blocker / "x" / "db.sqlite"))

    status, body, _ = await invoke({"mode": "fiction-history"}, settings, bad_store, clock, sleep)

    assert status == 500
    assert body["error"].startswith("Configuration error")


async def test_unhandled_error_is_500(settings, store, clock, sleep):
    async def broken(limit):
        raise RuntimeError("query failed")

    store.get_entities_due_for_update = broken

    status, body, _ = await invoke({"mode": "fiction-history"}, settings, store, clock, sleep)

    assert status == 500
    assert body["error"] == "query failed"


# --------------------------------------------------------------------------- #
# event parsing
# --------------------------------------------------------------------------- #
def test_parse_event_merges_sources():
    params = parse_event(
        {
            "queryStringParameters": {"mode": "movement", "genre": "horror"},
            "pathParameters": {"genre": "fantasy"},
            "body": '{"followedId": 3}',
        }
    )

    assert params == {"mode": "movement", "genre": "fantasy", "followedId": 3}


def test_parse_event_rejects_bad_bodies():
    with pytest.raises(BadRequest):
        parse_event({"body": "{not json"})
    with pytest.raises(BadRequest):
        parse_event({"body": "[1, 2]"})
    assert parse_event(None) == {}
    assert parse_event({"body": ""}) == {}
