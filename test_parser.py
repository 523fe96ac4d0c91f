"""
Tests for the fiction page extractor and the Rising Stars list parser.
"""

from plugins.royalroad.parser import (
    FIELD_STRATEGIES,
    Document,
    extract,
    parse_rising_stars,
    run_strategies,
)
from conftest import FICTION_HTML, RISING_STARS_HTML


def test_extract_free_text_fields():
    record = extract(FICTION_HTML, "12345")

    assert record.id == "12345"
    assert record.title == "The Wandering Inn & Friends"
    assert record.author.name == "pirateaba"
    assert record.author.id == "9876"
    assert record.author.avatar == "/avatars/9876.png"
    assert record.description == "An inn at the edge of the world."
    assert record.image == "https://www.royalroadcdn.com/public/covers-large/12345.jpg"
    assert record.status == "ONGOING"
    assert record.type == "Original"


def test_extract_lists_are_trimmed_and_deduplicated():
    record = extract(FICTION_HTML)

    assert record.tags == ("Fantasy", "LitRPG")
    assert record.warnings == ("Profanity", "Gore")


def test_extract_numeric_stats():
    stats = extract(FICTION_HTML).stats

    assert stats.pages == 1234
    assert stats.ratings == 3210
    assert stats.followers == 20100
    assert stats.favorites == 5432
    assert stats.total_views == 12345678
    assert stats.average_views == 45000
    # "999 Views" sits in the chapter table, not in the stats block
    assert stats.views == 0


def test_extract_scores():
    stats = extract(FICTION_HTML).stats

    assert stats.overall_score == 4.61
    assert stats.score == 4.61
    assert stats.style_score == 4.5
    assert stats.grammar_score == 4.25
    assert stats.character_score == 0.0


def test_scores_are_clamped():
    assert extract(FICTION_HTML).stats.story_score == 5.0

    html = '<div class="stats-content"><p>7.5 / 5</p></div>'
    assert extract(html).stats.score == 5.0


def test_labelled_score_example():
    html = (
        '<div class="fiction-stats">'
        '<span aria-label="Overall Score" data-content="4.61 / 5"></span>'
        "Pages : 1,234"
        "</div>"
    )
    stats = extract(html).stats

    assert stats.overall_score == 4.61
    assert stats.pages == 1234


def test_generic_score_falls_back_to_stats_text():
    html = '<div class="fiction-stats"><p>Rated 3.75 / 5 by readers</p></div>'
    stats = extract(html).stats

    assert stats.score == 3.75
    assert stats.overall_score == 3.75


def test_missing_fields_default():
    record = extract("<html><body><p>Nothing here</p></body></html>")

    assert record.title == ""
    assert record.author.name == ""
    assert record.tags == ()
    assert record.warnings == ()
    assert record.stats.pages == 0
    assert record.stats.overall_score == 0.0


def test_extract_handles_empty_and_broken_markup():
    assert extract("").title == ""
    assert extract("<div><h1>Unclosed <b>title").title == "Unclosed title"


def test_extract_is_deterministic():
    assert extract(FICTION_HTML, "1") == extract(FICTION_HTML, "1")


def test_title_falls_back_to_meta():
    html = '<html><head><meta property="og:title" content="Meta &amp; Title"></head></html>'
    assert extract(html).title == "Meta & Title"


def test_status_is_found_by_vocabulary_when_classes_drift():
    html = "<div><span class='new-badge'>COMPLETED</span><span>Completed soon</span></div>"
    assert extract(html).status == "COMPLETED"


def test_numbers_fall_back_to_page_text():
    html = "<div><p>Followers : 1,500</p></div>"
    assert extract(html).stats.followers == 1500


def test_run_strategies_skips_failures_and_empty_results():
    doc = Document("<h1>Title</h1>")

    def boom(_doc):
        raise RuntimeError("selector drifted")

    def empty(_doc):
        return ""

    def found(d):
        return d.soup.h1.get_text()

    assert run_strategies([boom, empty, found], doc, "default") == "Title"
    assert run_strategies([boom, empty], doc, "default") == "default"


def test_every_field_has_a_strategy_chain():
    for name, chain in FIELD_STRATEGIES.items():
        assert chain, name


def test_parse_rising_stars(captured_at):
    entries = parse_rising_stars(RISING_STARS_HTML, "fantasy", captured_at)

    assert [e.royalroad_id for e in entries] == ["111", "222", "333"]
    # the advert keeps its slot, so Third is still shown at rank 4
    assert [e.position for e in entries] == [1, 2, 4]
    first = entries[0]
    assert first.title == "First & Best"
    assert first.author_name == "Alice"
    assert first.image_url == "/covers/111.jpg"
    assert first.genre == "fantasy"
    assert first.captured_at == captured_at
    assert entries[1].author_name == ""


def test_parse_rising_stars_skips_duplicate_ids(captured_at):
    html = (
        '<div class="fiction-list-item"><a href="/fiction/1">A</a></div>'
        '<div class="fiction-list-item"><a href="/fiction/1">A again</a></div>'
        '<div class="fiction-list-item"><a href="/fiction/2">B</a></div>'
    )
    entries = parse_rising_stars(html, "main", captured_at)

    assert [(e.royalroad_id, e.position) for e in entries] == [("1", 1), ("2", 3)]


def test_parse_rising_stars_empty_page(captured_at):
    assert parse_rising_stars("", "main", captured_at) == []
