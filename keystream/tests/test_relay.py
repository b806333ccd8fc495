"""
Unit Tests for Relay Typing
===========================

Tests for keystream/relay/{cadence,dedup,scheduler}.py

Test Coverage:
--------------
1. Per-character delay model: bounds, pauses, capitals, hesitation
2. Frame synthesis: one prefix frame per character, reproducible by seed
3. Dedup ledger: unchanged items suppressed, bounded eviction
4. Scheduler: playback order, completion, fairness caps, item cleanup
5. Relay usernames are cut to the username limit rather than rejected
"""

import random

import pytest

from keystream.errors import DuplicateItemError, EmptyItemError
from keystream.models import RelayItem
from keystream.relay import RelayScheduler
from keystream.relay.cadence import MAX_DELAY_MS, MIN_DELAY_MS, build_frames, char_delay
from keystream.relay.dedup import DedupLedger, item_fingerprint
from keystream.relay.scheduler import relay_content, relay_username, url_label
from keystream.storage import InMemoryMessageStore


# ============================================================================
# Cadence
# ============================================================================

@pytest.mark.parametrize("char", ["a", " ", ".", ",", "Z"])
@pytest.mark.parametrize("draw", [0.0, 0.02, 0.5, 0.999])
def test_char_delay_is_bounded(char, draw):
    for cps in (5.0, 17.0, 34.0, 500.0):
        delay = char_delay(char, "b", cps, draw)
        assert MIN_DELAY_MS <= delay <= MAX_DELAY_MS


def test_punctuation_pauses_longer_than_letters():
    letter = char_delay("a", "b", 20.0, 0.5)
    pause = char_delay(",", " ", 20.0, 0.5)
    sentence = char_delay(".", " ", 20.0, 0.5)

    assert letter < pause < sentence
    assert pause - letter == pytest.approx(70.0)
    assert sentence - letter == pytest.approx(220.0)


def test_space_is_quicker_unless_a_capital_follows():
    letter = char_delay("a", "b", 20.0, 0.5)
    space = char_delay(" ", "b", 20.0, 0.5)
    before_capital = char_delay(" ", "B", 20.0, 0.5)

    assert space == pytest.approx(letter * 0.6)
    assert before_capital - space == pytest.approx(45.0)


def test_low_draw_adds_hesitation():
    # base at 20 cps is 50ms scaled by (0.85 + 0.3 * draw)
    assert char_delay("a", "b", 20.0, 0.0) == pytest.approx(42.5 + 90.0)
    assert char_delay("a", "b", 20.0, 0.04) == pytest.approx(50.0 * 0.862)


def test_delay_is_clamped():
    assert char_delay("a", "b", 1000.0, 0.5) == MIN_DELAY_MS
    assert char_delay(".", " ", 5.0, 0.0) == MAX_DELAY_MS


def test_build_frames_types_prefixes():
    frames = build_frames("Hello, world.", random.Random(7))

    assert len(frames) == 13
    assert [f.content for f in frames[:3]] == ["H", "He", "Hel"]
    assert frames[-1].content == "Hello, world."
    assert all(MIN_DELAY_MS <= f.delay_ms <= MAX_DELAY_MS for f in frames)


def test_build_frames_is_reproducible_by_seed():
    first = build_frames("The quick brown fox", random.Random("job-1"))
    second = build_frames("The quick brown fox", random.Random("job-1"))

    assert first == second


def test_build_frames_empty_text():
    assert build_frames("", random.Random(1)) == []


# ============================================================================
# Dedup
# ============================================================================

def test_fingerprint_tracks_content_not_identity():
    item = RelayItem(externalId=1, title="Hello")

    assert item_fingerprint(item) == item_fingerprint(RelayItem(externalId="other", title="Hello"))
    assert item_fingerprint(item) != item_fingerprint(RelayItem(externalId=1, title="Hello!"))


def test_ledger_evicts_oldest_entries():
    ledger = DedupLedger(capacity=2)
    ledger.record("a", "1")
    ledger.record("b", "1")
    ledger.record("a", "2")
    ledger.record("c", "1")

    assert len(ledger) == 2
    assert "b" not in ledger
    assert ledger.is_unchanged("a", "2")
    assert not ledger.is_unchanged("a", "1")


# ============================================================================
# Item helpers
# ============================================================================

def test_relay_content_prefers_title_and_strips_markup():
    assert relay_content(RelayItem(externalId=1, title="  Big   news ", text="ignored")) == "Big news"
    assert relay_content(RelayItem(externalId=2, text="<p>Hello &amp; <i>welcome</i></p>")) == "Hello & welcome"
    assert relay_content(RelayItem(externalId=3, text="<p></p>")) == ""


def test_relay_content_truncates_long_text():
    content = relay_content(RelayItem(externalId=1, text="word " * 60), max_length=200)

    assert len(content) <= 200
    assert content.endswith("...")
    assert content.startswith("word word")


def test_relay_username_cuts_long_names():
    assert relay_username("ada", "relay") == "ada"
    assert relay_username("x" * 100, "relay") == "x" * 64
    assert relay_username(" " * 3, "relay") == "relay"
    assert relay_username(None, "relay") == "relay"


def test_url_label_drops_www():
    assert url_label("https://www.example.com/path") == "example.com"
    assert url_label("https://news.ycombinator.com/item?id=1") == "news.ycombinator.com"
    assert url_label(None) is None
    assert url_label("not a url") is None


# ============================================================================
# Scheduler
# ============================================================================

@pytest.fixture
def store(datetime_clock):
    return InMemoryMessageStore(clock=datetime_clock)


@pytest.fixture
def scheduler(store, recording_fanout, clock):
    return RelayScheduler(store=store, fanout=recording_fanout, clock=clock)


async def run_to_completion(scheduler, clock, step=1.0, max_ticks=100):
    for _ in range(max_ticks):
        if scheduler.pending_count == 0:
            return
        clock.advance(step)
        await scheduler.tick()
    raise AssertionError("relay jobs did not finish")


@pytest.mark.asyncio
async def test_item_is_typed_then_stored(scheduler, store, recording_fanout, clock):
    job = await scheduler.ingest(RelayItem(externalId=1, title="Hello", author="ada"), "demo")
    await scheduler.tick()
    await run_to_completion(scheduler, clock)

    keystrokes = recording_fanout.events("keystroke")
    assert [e["content"] for e in keystrokes] == ["H", "He", "Hel", "Hell", "Hello"]
    assert all(e["isTyping"] is True and e["username"] == "ada" for e in keystrokes)
    assert all(e["yPosition"] == job.y_position for e in keystrokes)

    final = recording_fanout.events()[-1]
    assert final["type"] == "newMessage"
    assert final["content"] == "Hello"
    assert final["serverPrepared"] is True
    assert "id" in final and "timestamp" in final

    stored = await store.recent("demo", 10)
    assert [m.content for m in stored] == ["Hello"]
    assert stored[0].xPosition == 0
    assert stored[0].yPosition == job.y_position
    assert all(room == "demo" for room, _, _ in recording_fanout.broadcasts)


@pytest.mark.asyncio
async def test_y_position_within_lane_range(scheduler):
    for i in range(20):
        job = await scheduler.ingest(RelayItem(externalId=i, title="Lane"), "demo")
        assert 8.0 <= job.y_position <= 88.0


@pytest.mark.asyncio
async def test_unchanged_item_is_rejected(scheduler):
    item = RelayItem(externalId=42, title="Same story")
    await scheduler.ingest(item, "demo")

    with pytest.raises(DuplicateItemError):
        await scheduler.ingest(RelayItem(externalId=42, title="Same story"), "demo")

    assert scheduler.pending_count == 1


@pytest.mark.asyncio
async def test_changed_item_is_scheduled_again(scheduler):
    await scheduler.ingest(RelayItem(externalId=42, title="Draft"), "demo")
    await scheduler.ingest(RelayItem(externalId=42, title="Draft, edited"), "demo")

    assert scheduler.pending_count == 2
    assert scheduler.ledger_size == 1


@pytest.mark.asyncio
async def test_empty_item_is_rejected_and_not_remembered(scheduler):
    with pytest.raises(EmptyItemError):
        await scheduler.ingest(RelayItem(externalId=7, text="<br>"), "demo")

    assert scheduler.ledger_size == 0
    assert scheduler.pending_count == 0


@pytest.mark.asyncio
async def test_new_job_emits_one_frame_immediately(scheduler, recording_fanout):
    await scheduler.ingest(RelayItem(externalId=1, title="Hello world"), "demo")

    assert await scheduler.tick() == 1
    assert await scheduler.tick() == 0


@pytest.mark.asyncio
async def test_stalled_job_catches_up_at_most_four_frames_per_tick(scheduler, clock):
    job = await scheduler.ingest(RelayItem(externalId=1, title="A longer headline"), "demo")
    clock.advance(100)

    assert await scheduler.tick() == 4
    assert job.frame_index == 4
    assert await scheduler.tick() == 4


@pytest.mark.asyncio
async def test_tick_cap_is_shared_round_robin(store, recording_fanout, clock):
    scheduler = RelayScheduler(store=store, fanout=recording_fanout, max_frames_per_tick=3, clock=clock)
    first = await scheduler.ingest(RelayItem(externalId=1, title="First headline"), "demo")
    second = await scheduler.ingest(RelayItem(externalId=2, title="Second headline"), "demo")
    clock.advance(100)

    assert await scheduler.tick() == 3
    assert sorted([first.frame_index, second.frame_index]) == [1, 2]

    assert await scheduler.tick() == 3
    assert [first.frame_index, second.frame_index] == [3, 3]


@pytest.mark.asyncio
async def test_missing_author_uses_default_username(scheduler):
    job = await scheduler.ingest(RelayItem(externalId=1, title="Hi", author="  "), "demo")

    assert job.username == "relay"


@pytest.mark.asyncio
async def test_links_and_labels(scheduler):
    both = await scheduler.ingest(
        RelayItem(
            externalId=1,
            title="Story",
            url="https://www.example.com/post",
            sourceUrl="https://news.ycombinator.com/item?id=1",
        ),
        "demo",
    )
    only_source = await scheduler.ingest(
        RelayItem(externalId=2, title="Comment", sourceUrl="https://news.ycombinator.com/item?id=2"),
        "demo",
    )

    assert both.source_url == "https://www.example.com/post"
    assert both.source_label == "example.com"
    assert both.story_url == "https://news.ycombinator.com/item?id=1"
    assert both.story_label == "news.ycombinator.com"
    assert only_source.source_url == "https://news.ycombinator.com/item?id=2"
    assert only_source.story_url is None


@pytest.mark.asyncio
async def test_jobs_in_different_rooms_stay_in_their_rooms(scheduler, recording_fanout, clock):
    await scheduler.ingest(RelayItem(externalId=1, title="Alpha"), "one")
    await scheduler.ingest(RelayItem(externalId=2, title="Beta"), "two")
    await run_to_completion(scheduler, clock)

    for room, event, _ in recording_fanout.broadcasts:
        expected = "Alpha" if room == "one" else "Beta"
        assert expected.startswith(event["content"])


@pytest.mark.asyncio
async def test_long_author_is_truncated_not_rejected(scheduler):
    job = await scheduler.ingest(RelayItem(externalId=1, title="Hi", author="a" * 30 + " " + "b" * 100), "demo")

    assert len(job.username) == 64
    assert job.username.startswith("a" * 30 + " b")
