"""Tests for the action-visualization channel."""

import json
import logging

import anyio
import pytest

from buildq.annotations import (
    AnnotationChannel,
    HighlightOverlay,
    Rect,
    decode_message,
    encode_message,
    listener_script,
)
from buildq.models import ActionKind, AnnotationEvent, UiTarget


class FakeDom:
    def __init__(self, elements):
        self.elements = elements

    def bounding_rect(self, selector):
        return self.elements.get(selector)


RECT = Rect(top=10, left=20, width=100, height=30)


# --- Wire format ---

def test_highlight_wire_format():
    msg = encode_message(AnnotationEvent("godmode-chat-input", ActionKind.HIGHLIGHT_TYPE))
    assert msg == {
        "source": "buildq-agent",
        "type": "HIGHLIGHT",
        "payload": {"selector": "godmode-chat-input", "actionType": "type"},
    }


def test_clear_wire_format():
    assert encode_message(AnnotationEvent("", ActionKind.CLEAR)) == {
        "source": "buildq-agent", "type": "CLEAR",
    }


def test_decode_accepts_json_text():
    raw = json.dumps({"source": "buildq-agent", "type": "HIGHLIGHT",
                      "payload": {"selector": "btn", "actionType": "click"}})
    assert decode_message(raw) == AnnotationEvent("btn", ActionKind.HIGHLIGHT_CLICK)


@pytest.mark.parametrize("message", [
    {"source": "someone-else", "type": "CLEAR"},
    {"source": "buildq-agent", "type": "EXPLODE"},
    {"source": "buildq-agent", "type": "HIGHLIGHT"},
    {"source": "buildq-agent", "type": "HIGHLIGHT", "payload": {"selector": "x", "actionType": "hover"}},
    {"source": "buildq-agent", "type": "HIGHLIGHT", "payload": {"actionType": "click"}},
    "not json",
    42,
])
def test_decode_ignores_foreign_and_malformed(message):
    assert decode_message(message) is None


# --- Sender ---

@pytest.mark.asyncio
async def test_channel_delivers_in_order():
    channel = AnnotationChannel()
    channel.highlight(UiTarget("godmode-chat-send-button", "click"))
    channel.clear()
    first = await channel.receive_stream.receive()
    second = await channel.receive_stream.receive()
    assert first["type"] == "HIGHLIGHT"
    assert second["type"] == "CLEAR"


@pytest.mark.asyncio
async def test_full_channel_drops_without_raising():
    channel = AnnotationChannel(max_buffer=1)
    channel.clear()
    channel.clear()  # dropped
    assert (await channel.receive_stream.receive())["type"] == "CLEAR"
    with pytest.raises(anyio.WouldBlock):
        channel.receive_stream.receive_nowait()


def test_closed_channel_drops_without_raising():
    channel = AnnotationChannel()
    channel.receive_stream.close()
    channel.clear()
    channel.close()
    channel.clear()


# --- Receiver ---

def test_overlay_highlights_with_label():
    overlay = HighlightOverlay(FakeDom({"godmode-chat-input": RECT}))
    overlay.handle(encode_message(AnnotationEvent("godmode-chat-input", ActionKind.HIGHLIGHT_TYPE)))
    assert overlay.current.rect == RECT
    assert overlay.current.label == "Typing"

    overlay.handle(encode_message(AnnotationEvent("", ActionKind.CLEAR)))
    assert overlay.current is None


def test_overlay_missing_element_is_warning_only(caplog):
    overlay = HighlightOverlay(FakeDom({}))
    with caplog.at_level(logging.WARNING, logger="buildq.annotations"):
        overlay.handle(encode_message(AnnotationEvent("ghost", ActionKind.HIGHLIGHT_CLICK)))
    assert overlay.current is None
    assert "ghost" in caplog.text


def test_overlay_ignores_other_sources():
    overlay = HighlightOverlay(FakeDom({"btn": RECT}), source_tag="my-agent")
    overlay.handle(encode_message(AnnotationEvent("btn", ActionKind.HIGHLIGHT_CLICK)))
    assert overlay.current is None
    overlay.handle(encode_message(AnnotationEvent("btn", ActionKind.HIGHLIGHT_CLICK), "my-agent"))
    assert overlay.current.label == "Clicking"


@pytest.mark.asyncio
async def test_overlay_consumes_channel():
    channel = AnnotationChannel()
    overlay = HighlightOverlay(FakeDom({"btn": RECT}))
    channel.highlight(UiTarget("btn", "click"))
    channel.close()
    await overlay.consume(channel.receive_stream)
    assert overlay.current.selector == "btn"


def test_listener_script_embeds_source_tag():
    script = listener_script("custom-tag")
    assert '"custom-tag"' in script
    assert "data-testid" in script
    assert "%(" not in script
    assert "@keyframes buildq-pulse{0%,100%{opacity:1}50%{opacity:.4}}" in script
