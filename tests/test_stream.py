"""Tests for stream frame decoding and delta accumulation."""
from __future__ import annotations

import pytest

from conftest import sse, text_delta, tool_delta
from tool_chat.stream import DeltaAccumulator, SSEDecoder, iter_events


def _decode(chunks) -> list[dict]:
    decoder = SSEDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return events


def _accumulate(events, **kwargs):
    acc = DeltaAccumulator(**kwargs)
    for event in events:
        acc.feed(event)
    return acc.result()


STREAM = (
    b": keepalive\n\n"
    + sse(
        text_delta("café "),
        tool_delta(index=0, call_id="c1", name="google_search"),
        tool_delta(index=0, arguments='{"query": "'),
        tool_delta(index=0, arguments='rust"}'),
        text_delta("done"),
    )
)


# ─── SSEDecoder ───────────────────────────────────────────────────────────────

def test_decoder_yields_payloads_in_order():
    events = _decode([STREAM])
    assert len(events) == 5
    assert events[0] == text_delta("café ")
    assert events[-1] == text_delta("done")


@pytest.mark.parametrize("split", range(1, len(STREAM)))
def test_decoder_any_split_point_matches_unsplit(split):
    assert _decode([STREAM[:split], STREAM[split:]]) == _decode([STREAM])


def test_decoder_single_byte_chunks_match_unsplit():
    chunks = [STREAM[i : i + 1] for i in range(len(STREAM))]
    assert _decode(chunks) == _decode([STREAM])


def test_decoder_skips_malformed_and_non_data_lines():
    raw = (
        b"event: ping\n"
        b"data: {not json}\n"
        b"data: [1, 2]\n"
        b"id: 7\n"
        + sse(text_delta("ok"))
    )
    assert _decode([raw]) == [text_delta("ok")]


def test_decoder_stops_at_done_sentinel():
    raw = sse(text_delta("a")) + sse(text_delta("after"), done=False)
    decoder = SSEDecoder()
    events = list(decoder.feed(raw))
    assert events == [text_delta("a")]
    assert decoder.done
    assert list(decoder.feed(sse(text_delta("more")))) == []


def test_decoder_flush_parses_unterminated_last_line():
    raw = b'data: {"choices": []}'
    decoder = SSEDecoder()
    assert list(decoder.feed(raw)) == []
    assert list(decoder.flush()) == [{"choices": []}]


def test_decoder_handles_crlf_lines():
    raw = b'data: {"a": 1}\r\n\r\ndata: [DONE]\r\n'
    assert _decode([raw]) == [{"a": 1}]


@pytest.mark.asyncio
async def test_iter_events_over_async_chunks():
    async def chunks():
        yield STREAM[:10]
        yield STREAM[10:]
        yield sse(text_delta("ignored"))

    events = [e async for e in iter_events(chunks())]
    assert events == _decode([STREAM])


# ─── DeltaAccumulator ─────────────────────────────────────────────────────────

def test_accumulator_concatenates_text_and_reports_each_fragment():
    seen = []
    text, calls = _accumulate(
        [text_delta("Hel"), text_delta("lo")], on_text=seen.append
    )
    assert text == "Hello"
    assert calls == []
    assert seen == ["Hel", "lo"]


def test_accumulator_builds_tool_call_from_fragments():
    text, calls = _accumulate(_decode([STREAM]))
    assert text == "café done"
    assert len(calls) == 1
    assert calls[0].id == "c1"
    assert calls[0].name == "google_search"
    assert calls[0].arguments == '{"query": "rust"}'


def test_accumulator_orders_tool_calls_by_index():
    events = [
        tool_delta(index=1, call_id="b", name="js_exec"),
        tool_delta(index=0, call_id="a", name="ai_pipe"),
        tool_delta(index=1, arguments='{"code":'),
        tool_delta(index=0, arguments="{}"),
        tool_delta(index=1, arguments=' "1"}'),
    ]
    _, calls = _accumulate(events)
    assert [c.id for c in calls] == ["a", "b"]
    assert calls[0].arguments == "{}"
    assert calls[1].arguments == '{"code": "1"}'


def test_accumulator_missing_index_means_first_call():
    events = [
        tool_delta(call_id="x", name="js_exec"),
        tool_delta(arguments='{"code": "1"}'),
    ]
    _, calls = _accumulate(events)
    assert len(calls) == 1
    assert calls[0].arguments == '{"code": "1"}'


def test_accumulator_synthesizes_distinct_ids():
    events = [
        tool_delta(index=0, name="js_exec"),
        tool_delta(index=2, name="ai_pipe"),
    ]
    _, calls = _accumulate(events, id_seed="seed")
    assert [c.id for c in calls] == ["call_0_seed", "call_2_seed"]


def test_accumulator_name_last_non_empty_wins():
    events = [
        tool_delta(index=0, call_id="c", name="google"),
        tool_delta(index=0, name=""),
        tool_delta(index=0, name="google_search"),
    ]
    _, calls = _accumulate(events)
    assert calls[0].name == "google_search"


def test_accumulator_ignores_payloads_without_choices():
    text, calls = _accumulate([{"usage": {"total_tokens": 3}}, {"choices": []}])
    assert text == ""
    assert calls == []


def test_accumulator_replay_is_idempotent():
    events = _decode([STREAM])
    assert _accumulate(events, id_seed="s") == _accumulate(events, id_seed="s")
