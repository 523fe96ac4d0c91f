"""
Invocation entry point.

``handle(event, remaining_ms)`` takes a function-as-a-service style event
(JSON body, path parameters or query parameters), runs one work mode and
returns ``{"statusCode", "headers", "body"}`` where ``body`` is the JSON
envelope ``{success, data?, error?, processedCount?, totalCount?,
remainingCount?, executionTime}``.

Modes:

=====================  ============================================
``fiction``            add one fiction (``royalroadId`` required)
``fiction-history``    refresh stats of due fictions
``rising-stars-main``  capture the main Rising Stars list
``rising-stars-all``   capture every due genre
``rising-stars-genre`` capture one genre (``genre`` required)
``movement``           rank movement between the two latest days
``position``           distance to the top 50 (``royalroadId``)
=====================  ============================================
"""

import asyncio
import json
import logging
import time
from datetime import datetime, time as dt_time, timezone
from typing import Any, Dict, Optional

from rankwatch.budget import Clock, ProcessingBudget, Sleep
from rankwatch.errors import ConfigurationError, HttpStatusError
from rankwatch.interfaces import FictionStore
from rankwatch.models import RunSummary
from rankwatch.settings import Settings, load_settings

from .diff import DEFAULT_WINDOW_SIZE, focus_window, latest_movement
from .fetcher import MAIN_GENRE, RoyalRoadFetcher
from .jobs import FictionHistoryJob, RisingStarsJob, scrape_single_fiction
from .position import estimate_position
from .sinks import SqliteFictionStore


logger = logging.getLogger(__name__)

MODES = (
    "fiction",
    "fiction-history",
    "rising-stars-main",
    "rising-stars-all",
    "rising-stars-genre",
    "movement",
    "position",
)


class BadRequest(Exception):
    """Missing or malformed invocation input (HTTP 400)."""


def parse_event(event: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Flatten query, path and body parameters into one dict (body wins)."""
    event = event or {}
    params: Dict[str, Any] = {}
    for key, value in event.items():
        if key not in ("body", "pathParameters", "queryStringParameters", "headers"):
            params[key] = value
    params.update(event.get("queryStringParameters") or {})
    params.update(event.get("pathParameters") or {})

    body = event.get("body")
    if isinstance(body, (str, bytes)) and body.strip():
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise BadRequest(f"Request body is not valid JSON: {e.msg}") from e
    if isinstance(body, dict):
        params.update(body)
    elif body not in (None, "", b""):
        raise BadRequest("Request body must be a JSON object")
    return params


def _int_param(params: Dict[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = params.get(key)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise BadRequest(f"{key} must be an integer") from e


def response(
    status_code: int,
    success: bool,
    execution_ms: int,
    *,
    data: Any = None,
    error: Optional[str] = None,
    summary: Optional[RunSummary] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success}
    if data is not None:
        body["data"] = data
    if error is not None:
        body["error"] = error
    if summary is not None:
        body["processedCount"] = summary.processed_count
        body["totalCount"] = summary.total_count
        body["remainingCount"] = summary.remaining_count
    body["executionTime"] = execution_ms
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


async def handle(
    event: Optional[Dict[str, Any]],
    remaining_ms: int,
    *,
    settings: Optional[Settings] = None,
    store: Optional[FictionStore] = None,
    fetcher: Optional[RoyalRoadFetcher] = None,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
) -> Dict[str, Any]:
    """Run one invocation. Never raises; failures become 4xx/5xx envelopes."""
    started = clock()

    def elapsed_ms() -> int:
        return int(round((clock() - started) * 1000))

    owns_store = store is None
    owns_fetcher = fetcher is None
    try:
        params = parse_event(event)
        mode = params.get("mode") or ("fiction" if params.get("royalroadId") else None)
        if mode not in MODES:
            raise BadRequest(f"mode must be one of {', '.join(MODES)}")

        settings = settings or load_settings()
        budget = ProcessingBudget.from_remaining(
            remaining_ms / 1000, settings.budget.buffer_ms / 1000, clock=clock
        )
        logger.info(f"Invocation mode={mode} {budget!r}")

        if store is None:
            store = SqliteFictionStore(settings.database.path, settings.freshness)
        await store.connect()
        if fetcher is None:
            fetcher = RoyalRoadFetcher(settings.scraping, sleep=sleep)
        fetcher.budget = budget

        return await _dispatch(mode, params, settings, store, fetcher, budget, sleep, elapsed_ms)

    except BadRequest as e:
        logger.warning(f"Bad request: {e}")
        return response(400, False, elapsed_ms(), error=str(e))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return response(500, False, elapsed_ms(), error=f"Configuration error: {e}")
    except Exception as e:
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return response(500, False, elapsed_ms(), error=str(e) or type(e).__name__)
    finally:
        if owns_fetcher and fetcher is not None:
            await fetcher.close()
        if owns_store and store is not None:
            await store.close()


async def _dispatch(mode, params, settings, store, fetcher, budget, sleep, elapsed_ms):
    if mode == "fiction":
        royalroad_id = str(params.get("royalroadId") or "").strip()
        if not royalroad_id:
            raise BadRequest("royalroadId is required")
        try:
            created, fiction = await scrape_single_fiction(store, fetcher, royalroad_id)
        except HttpStatusError as e:
            if e.is_gone:
                return response(404, False, elapsed_ms(), error=f"Fiction {royalroad_id} not found")
            raise
        if not created:
            return response(200, True, elapsed_ms(), data={"message": "Fiction already exists", "fiction": fiction})
        return response(200, True, elapsed_ms(), data=fiction)

    if mode == "fiction-history":
        job = FictionHistoryJob(store, fetcher, budget, settings, sleep)
        summary = await job.run(_int_param(params, "limit"))
        return _summary_response(summary, elapsed_ms)

    if mode.startswith("rising-stars"):
        job = RisingStarsJob(store, fetcher, budget, settings, sleep)
        if mode == "rising-stars-main":
            summary = await job.run([MAIN_GENRE], only_due=False)
        elif mode == "rising-stars-genre":
            genre = str(params.get("genre") or "").strip()
            if not genre:
                raise BadRequest("genre is required")
            summary = await job.run([genre], only_due=False)
        else:
            summary = await job.run()
        return _summary_response(summary, elapsed_ms, created=job.created_count)

    if mode == "movement":
        genre = str(params.get("genre") or MAIN_GENRE)
        followed_id = _int_param(params, "followedId")
        size = _int_param(params, "size", DEFAULT_WINDOW_SIZE)
        # only the two newest capture days take part in the diff
        days = await store.get_capture_days(genre, 2)
        since = datetime.combine(days[-1], dt_time.min, tzinfo=timezone.utc) if days else None
        movements = latest_movement(await store.get_snapshot_entries(genre, since))
        rows = focus_window(movements, followed_id, size)
        return response(
            200, True, elapsed_ms(),
            data={"genre": genre, "movements": [m.to_dict() for m in rows]},
        )

    # position
    royalroad_id = str(params.get("royalroadId") or "").strip()
    if not royalroad_id:
        raise BadRequest("royalroadId is required")
    fiction = await store.get_fiction_by_key(royalroad_id)
    if not fiction:
        return response(404, False, elapsed_ms(), error=f"Fiction {royalroad_id} not found")
    entries = await store.get_latest_snapshot()
    if not entries:
        return response(200, True, elapsed_ms(), data={"message": "No Rising Stars data yet"})
    estimate = estimate_position(entries, fiction["id"])
    data = estimate.to_dict()
    data.update(title=fiction["title"], authorName=fiction["author_name"], royalroadId=royalroad_id)
    return response(200, True, elapsed_ms(), data=data)


def _summary_response(summary: RunSummary, elapsed_ms, **extra) -> Dict[str, Any]:
    if summary.total_count == 0:
        data: Dict[str, Any] = {"message": "Nothing due for update"}
    else:
        data = summary.to_dict()
    data.update(extra)
    return response(200, True, elapsed_ms(), data=data, summary=summary)
