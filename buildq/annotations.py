"""Action-Visualization Channel: narrate UI interactions into the live preview.

The agent side pushes HIGHLIGHT / CLEAR messages into an anyio memory
stream without waiting for the preview; the preview side
(``HighlightOverlay``) turns them into an outlined, labelled rectangle.
Delivery is best-effort and never acknowledged.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Protocol

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream

from .models import ActionKind, AnnotationEvent, UiTarget

logger = logging.getLogger(__name__)

SOURCE_TAG = "buildq-agent"

ACTION_LABELS = {"click": "Clicking", "type": "Typing"}

_KIND_BY_ACTION = {
    "click": ActionKind.HIGHLIGHT_CLICK,
    "type": ActionKind.HIGHLIGHT_TYPE,
}
_ACTION_BY_KIND = {v: k for k, v in _KIND_BY_ACTION.items()}


# -------------------------------------------------------------------
# Wire format
# -------------------------------------------------------------------

def event_for(target: UiTarget) -> AnnotationEvent:
    kind = _KIND_BY_ACTION.get(target.action, ActionKind.HIGHLIGHT_CLICK)
    return AnnotationEvent(selector=target.selector, action_kind=kind)


def clear_event() -> AnnotationEvent:
    return AnnotationEvent(selector="", action_kind=ActionKind.CLEAR)


def encode_message(event: AnnotationEvent, source: str = SOURCE_TAG) -> dict:
    if event.action_kind == ActionKind.CLEAR:
        return {"source": source, "type": "CLEAR"}
    return {
        "source": source,
        "type": "HIGHLIGHT",
        "payload": {
            "selector": event.selector,
            "actionType": _ACTION_BY_KIND[event.action_kind],
        },
    }


def decode_message(message, source: str = SOURCE_TAG) -> AnnotationEvent | None:
    """Parse a posted message; None for foreign or malformed messages."""
    if isinstance(message, (str, bytes)):
        try:
            message = json.loads(message)
        except ValueError:
            return None
    if not isinstance(message, dict) or message.get("source") != source:
        return None

    kind = message.get("type")
    if kind == "CLEAR":
        return clear_event()
    if kind != "HIGHLIGHT":
        return None
    payload = message.get("payload")
    if not isinstance(payload, dict):
        return None
    selector = payload.get("selector")
    action = payload.get("actionType")
    if not isinstance(selector, str) or not selector or action not in _KIND_BY_ACTION:
        return None
    return AnnotationEvent(selector=selector, action_kind=_KIND_BY_ACTION[action])


# -------------------------------------------------------------------
# Sender
# -------------------------------------------------------------------

class AnnotationChannel:
    """Fire-and-forget sender. A full or closed stream drops the message."""

    def __init__(self, source_tag: str = SOURCE_TAG, max_buffer: int = 64):
        self.source_tag = source_tag
        self._send, self._receive = anyio.create_memory_object_stream(max_buffer)

    @property
    def receive_stream(self) -> MemoryObjectReceiveStream:
        return self._receive

    def emit(self, event: AnnotationEvent) -> None:
        message = encode_message(event, self.source_tag)
        try:
            self._send.send_nowait(message)
        except (anyio.WouldBlock, anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("annotation dropped: %s", message["type"])

    def highlight(self, target: UiTarget) -> None:
        self.emit(event_for(target))

    def clear(self) -> None:
        self.emit(clear_event())

    def close(self) -> None:
        self._send.close()


# -------------------------------------------------------------------
# Receiver (preview side)
# -------------------------------------------------------------------

@dataclass(frozen=True)
class Rect:
    top: float
    left: float
    width: float
    height: float


@dataclass(frozen=True)
class Highlight:
    selector: str
    rect: Rect
    label: str


class ElementLocator(Protocol):
    def bounding_rect(self, selector: str) -> Rect | None:
        """Viewport rectangle of the element with this test id, or None."""
        ...


class HighlightOverlay:
    """Preview-side handler that keeps the single active highlight."""

    def __init__(self, locator: ElementLocator, source_tag: str = SOURCE_TAG):
        self.locator = locator
        self.source_tag = source_tag
        self.current: Highlight | None = None

    def handle(self, message) -> None:
        event = decode_message(message, self.source_tag)
        if event is None:
            return
        if event.action_kind == ActionKind.CLEAR:
            self.current = None
            return
        rect = self.locator.bounding_rect(event.selector)
        if rect is None:
            logger.warning("Agent tried to highlight non-existent element: %s", event.selector)
            return
        label = ACTION_LABELS[_ACTION_BY_KIND[event.action_kind]]
        self.current = Highlight(selector=event.selector, rect=rect, label=label)

    async def consume(self, stream: MemoryObjectReceiveStream) -> None:
        async with stream:
            async for message in stream:
                self.handle(message)


LISTENER_SCRIPT = """\
<script>
(function () {
  var SOURCE = %(source)s;
  var box = null;
  function clear() { if (box) { box.remove(); box = null; } }
  window.addEventListener('message', function (event) {
    var msg = event.data;
    if (!msg || msg.source !== SOURCE) return;
    if (msg.type === 'CLEAR') { clear(); return; }
    if (msg.type !== 'HIGHLIGHT' || !msg.payload) return;
    var el = document.querySelector('[data-testid="' + msg.payload.selector + '"]');
    if (!el) { console.warn('Agent tried to highlight non-existent element:', msg.payload.selector); return; }
    clear();
    var r = el.getBoundingClientRect();
    box = document.createElement('div');
    box.style.cssText = 'position:fixed;pointer-events:none;z-index:2147483647;' +
      'border:2px solid #6366f1;border-radius:4px;animation:buildq-pulse 1s infinite;' +
      'top:' + r.top + 'px;left:' + r.left + 'px;width:' + r.width + 'px;height:' + r.height + 'px;';
    var label = document.createElement('span');
    label.textContent = msg.payload.actionType === 'type' ? 'Typing' : 'Clicking';
    label.style.cssText = 'position:absolute;top:-1.5em;left:0;background:#6366f1;color:#fff;' +
      'font:12px sans-serif;padding:1px 4px;border-radius:3px;';
    box.appendChild(label);
    document.body.appendChild(box);
  });
  var style = document.createElement('style');
  style.textContent = '@keyframes buildq-pulse{0%%,100%%{opacity:1}50%%{opacity:.4}}';
  document.head.appendChild(style);
})();
</script>
"""


def listener_script(source_tag: str = SOURCE_TAG) -> str:
    """JavaScript snippet to inject into the preview document."""
    return LISTENER_SCRIPT % {"source": json.dumps(source_tag)}
