"""
Shared pytest fixtures: a controllable clock, a sleep that advances it,
a scripted HTTP stand-in and canned Royal Road pages.
"""

from datetime import datetime, timezone
from typing import Dict, List, Union

import pytest

from rankwatch.settings import Settings


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """``asyncio.sleep`` stand-in that records delays and advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


class FakeHttp:
    """Answers ``get_text`` from a path -> html/exception map."""

    def __init__(self, pages: Dict[str, Union[str, BaseException]], clock: FakeClock = None, latency: float = 0.0):
        self.pages = dict(pages)
        self.clock = clock
        self.latency = latency
        self.requests: List[str] = []
        self.closed = False

    async def get_text(self, path: str) -> str:
        self.requests.append(path)
        if self.clock is not None:
            self.clock.advance(self.latency)
        result = self.pages.get(path)
        if result is None:
            raise AssertionError(f"Unexpected path: {path}")
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self) -> None:
        self.closed = True


FICTION_HTML = """
<html>
<head>
  <meta property="og:title" content="Og Title">
  <meta property="og:image" content="https://www.royalroadcdn.com/public/covers-large/og.jpg">
</head>
<body>
<div class="fic-header">
  <div class="cover"><img src="https://www.royalroadcdn.com/public/covers-large/12345.jpg"></div>
  <h1>The Wandering Inn &amp; Friends</h1>
  <h4>by <a href="/profile/9876"><img src="/avatars/9876.png"> pirateaba</a></h4>
</div>
<div class="fiction-info">
  <span class="label label-default">Original</span>
  <span class="label label-default">ONGOING</span>
  <span class="tags">
    <a class="fiction-tag" href="/fictions/search?tagsAdd=fantasy">Fantasy</a>
    <a class="fiction-tag" href="/fictions/search?tagsAdd=litrpg"> LitRPG </a>
    <a class="fiction-tag" href="/fictions/search?tagsAdd=fantasy">Fantasy</a>
  </span>
  <div class="description"><p>An inn at the edge of the world.</p></div>
  <div class="text-center font-red-sunglo">
    <strong>This fiction contains:</strong>
    <ul class="list-inline">
      <li>Profanity</li>
      <li>Gore</li>
    </ul>
  </div>
</div>
<div class="fiction-stats">
  <ul>
    <li>Overall Score</li>
    <li><span aria-label="Overall Score" data-content="4.61 / 5" class="star"></span></li>
    <li>Style Score</li>
    <li><span data-original-title="Style Score" aria-label="4.5 stars" class="star"></span></li>
    <li>Story Score</li>
    <li><span aria-label="Story Score" data-content="9.9 / 5" class="star"></span></li>
    <li>Grammar Score</li>
    <li><span data-original-title="Grammar Score" aria-label="4.25 stars" class="star"></span></li>
  </ul>
  <ul>
    <li>Total Views :</li><li>12,345,678</li>
    <li>Average Views :</li><li>45,000</li>
    <li>Followers :</li><li>20,100</li>
    <li>Favorites :</li><li>5,432</li>
    <li>Ratings :</li><li>3,210</li>
    <li>Pages :</li><li>1,234</li>
  </ul>
</div>
<table id="chapters"><tr><td>Chapter 1</td><td>999 Views</td></tr></table>
</body>
</html>
"""


RISING_STARS_HTML = """
<div class="fiction-list">
  <div class="fiction-list-item row">
    <img src="/covers/111.jpg">
    <h2 class="fiction-title"><a href="/fiction/111/first-story">First &amp; Best</a></h2>
    <span class="author">Alice</span>
  </div>
  <div class="fiction-list-item row">
    <h2 class="fiction-title"><a href="/fiction/222/second">Second</a></h2>
  </div>
  <div class="fiction-list-item row">
    <h2 class="fiction-title">Advertisement</h2>
  </div>
  <div class="fiction-list-item row">
    <h2 class="fiction-title"><a href="/fiction/333">Third</a></h2>
    <span class="author">Carol</span>
  </div>
</div>
"""


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def captured_at() -> datetime:
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings.model_validate(
        {
            "database": {"path": str(tmp_path / "rankwatch.db")},
            "scraping": {"request_delay_ms": 100, "cooldown_ms": 500, "slice_pause_ms": 0},
            "budget": {"max_execution_ms": 60000, "buffer_ms": 0},
            "genres": ["main", "fantasy"],
        }
    )
