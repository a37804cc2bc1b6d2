"""Recovery of result URLs from generation responses of uncertain shape.

Upstream deployments answer with structured ``output`` lists, chat-style
deltas whose prose happens to contain a link, or plain text lines. The
extractor reads them in layers, most reliable first:

1. an ``error`` field aborts the run;
2. ``output[*].url`` entries are authoritative and switch off prose scanning;
3. ``content``/``reasoning`` deltas and non-JSON lines are scanned for media
   links;
4. when the stream ends with nothing found, the whole transcript is scanned
   once more for any link at all.

Every URL is cleaned, classified into a :class:`UrlSlot` and kept only if
that slot is still empty (first seen wins).
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlsplit

from src.relay.domain.exceptions import ExtractionError, GenerationError
from src.relay.domain.models import ResultUrls, UrlSlot

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
STREAM_END = "[DONE]"
_SSE_FIELDS = ("event:", "id:", "retry:", ":")

_TRAILING = ".,;:!?'\"`>*，。；：！？、）】」』》"
_CLOSERS = {")": "(", "]": "[", "}": "{"}
# Whitespace, quotes, angle brackets and CJK punctuation / full-width forms end a URL.
_URL_BODY = r"[^\s<>\"'`\u3000-\u303f\uff00-\uffef]+"
ANY_URL = re.compile(rf"(?:https?:)?//{_URL_BODY}", re.IGNORECASE)


@dataclass(frozen=True)
class ClassificationRule:
    """Send URLs whose host matches ``hosts`` (and path ``extensions``) to ``slot``.

    An empty ``hosts`` or ``extensions`` tuple places no constraint.
    """

    slot: UrlSlot
    hosts: tuple[str, ...] = ()
    extensions: tuple[str, ...] = ()

    def matches(self, url: str) -> bool:
        parts = urlsplit(url)
        host = parts.netloc.lower()
        if self.hosts and not any(_host_matches(host, candidate) for candidate in self.hosts):
            return False
        if self.extensions and not _has_extension(parts.path, self.extensions):
            return False
        return True


def _host_matches(host: str, candidate: str) -> bool:
    candidate = candidate.lower()
    return host == candidate or host.endswith("." + candidate)


def _has_extension(path: str, extensions: Sequence[str]) -> bool:
    path = path.lower()
    return any(path.endswith("." + ext.lower().lstrip(".")) for ext in extensions)


def strip_trailing_punctuation(url: str) -> str:
    """Drop punctuation a greedy match picked up after the URL proper."""
    while url:
        last = url[-1]
        if last in _CLOSERS:
            if url.count(_CLOSERS[last]) >= url.count(last):
                break
        elif last not in _TRAILING:
            break
        url = url[:-1]
    return url


class UrlClassifier:
    def __init__(
        self,
        rules: Sequence[ClassificationRule],
        *,
        media_extensions: Sequence[str] = (),
        media_keywords: Sequence[str] = (),
        api_base: str | None = None,
    ) -> None:
        self._rules = tuple(rules)
        self._media_extensions = tuple(media_extensions)
        self._media_keywords = tuple(keyword.lower() for keyword in media_keywords)
        self._api_base = api_base.rstrip("/") + "/" if api_base else None
        ext_group = "|".join(re.escape(ext.lstrip(".")) for ext in self._media_extensions)
        patterns = [ANY_URL.pattern]
        if ext_group:
            # Host-relative media paths such as /files/abc.mp4.
            patterns.append(
                rf"(?<![\w/.:])/[\w\-./%~]+\.(?:{ext_group})(?:\?[^\s<>\"'`()\[\]]*)?(?![\w])"
            )
        self.candidate_pattern = re.compile("|".join(patterns), re.IGNORECASE)

    def normalize(self, raw: str) -> str | None:
        url = strip_trailing_punctuation(raw.strip())
        if not url:
            return None
        lowered = url.lower()
        if lowered.startswith(("http://", "https://")):
            return url
        if url.startswith("//"):
            scheme = urlsplit(self._api_base).scheme if self._api_base else "https"
            return f"{scheme or 'https'}:{url}"
        if url.startswith("/"):
            if self._api_base is None:
                return None
            return urljoin(self._api_base, url)
        return None

    def classify(self, url: str) -> UrlSlot:
        for rule in self._rules:
            if rule.matches(url):
                return rule.slot
        return UrlSlot.PRIMARY

    def looks_like_media(self, url: str) -> bool:
        if self.classify(url) is not UrlSlot.PRIMARY:
            return True
        parts = urlsplit(url)
        if _has_extension(parts.path, self._media_extensions):
            return True
        haystack = (parts.netloc + parts.path).lower()
        return any(keyword in haystack for keyword in self._media_keywords)


@dataclass
class ProgressUpdate:
    """Human-readable text the extractor wants relayed to an observer."""

    content: str
    kind: str = "text"


@dataclass
class _ScanState:
    cursor: int = 0
    authoritative: bool = False
    done: bool = False
    sources: dict[UrlSlot, str] = field(default_factory=dict)


class StreamResultExtractor:
    """Incrementally consume a newline/SSE framed response body.

    ``feed`` accepts raw chunks and returns the progress updates they
    produced; ``finish`` flushes the last line and returns the collected
    :class:`ResultUrls` or raises :class:`ExtractionError`.
    """

    def __init__(self, classifier: UrlClassifier, *, tail_chars: int = 500) -> None:
        self._classifier = classifier
        self._tail_chars = tail_chars
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._text: list[str] = []
        self._text_len = 0
        self._joined = ""
        self._state = _ScanState()
        self.result_urls = ResultUrls()

    @property
    def transcript(self) -> str:
        if len(self._joined) != self._text_len:
            self._joined = "".join(self._text)
        return self._joined

    @property
    def sources(self) -> dict[UrlSlot, str]:
        """Which layer filled each slot: ``output``, ``text`` or ``final_scan``."""
        return dict(self._state.sources)

    @property
    def stream_ended(self) -> bool:
        return self._state.done

    def feed(self, chunk: bytes | str) -> list[ProgressUpdate]:
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        updates: list[ProgressUpdate] = []
        for line in lines:
            updates.extend(self._handle_line(line))
        return updates

    def feed_payload(self, payload: Any) -> list[ProgressUpdate]:
        """Handle one already-decoded JSON body as if it were a stream delta."""
        return self._handle_json(payload)

    def finish(self) -> ResultUrls:
        updates = []
        tail = self._decoder.decode(b"", final=True)
        self._buffer += tail
        if self._buffer:
            updates = self._handle_line(self._buffer)
            self._buffer = ""
        if updates:
            logger.debug("Flushed final unterminated line", extra={"updates": len(updates)})
        if not self._state.authoritative:
            self._scan_text(final=True)
        if not self.result_urls.any():
            self._final_scan()
        if not self.result_urls.any():
            raise ExtractionError(self.transcript[-self._tail_chars:])
        return self.result_urls

    def _handle_line(self, line: str) -> list[ProgressUpdate]:
        line = line.rstrip("\r")
        if not line.strip():
            return []
        if line.startswith(SSE_DATA_PREFIX):
            payload = line[len(SSE_DATA_PREFIX):].strip()
        elif line.startswith(_SSE_FIELDS):
            return []
        else:
            payload = line.strip()
        if payload == STREAM_END:
            self._state.done = True
            return []
        try:
            data = json.loads(payload)
        except ValueError:
            return self._handle_raw(payload)
        if isinstance(data, (dict, list)):
            return self._handle_json(data)
        return self._handle_raw(payload)

    def _handle_raw(self, payload: str) -> list[ProgressUpdate]:
        self._append_text(payload + "\n")
        self._scan_if_allowed()
        return [ProgressUpdate(payload + "\n")]

    def _handle_json(self, data: Any) -> list[ProgressUpdate]:
        if isinstance(data, list):
            updates: list[ProgressUpdate] = []
            for item in data:
                if isinstance(item, dict):
                    updates.extend(self._handle_json(item))
            return updates
        if not isinstance(data, dict):
            return []

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else None
            raise GenerationError(f"Upstream reported an error: {message or error}")

        deltas = _delta_objects(data)
        for delta in deltas:
            for url in _output_urls(delta):
                self._record(url, source="output")

        updates: list[ProgressUpdate] = []
        for delta in deltas:
            for key in ("reasoning_content", "reasoning", "content"):
                value = delta.get(key)
                if isinstance(value, str) and value:
                    self._append_text(value)
                    updates.append(ProgressUpdate(value, kind=key))
        self._scan_if_allowed()

        for delta in deltas:
            fraction = delta.get("progress")
            if isinstance(fraction, (int, float)) and not isinstance(fraction, bool):
                percent = fraction * 100 if fraction <= 1 else fraction
                updates.append(ProgressUpdate(f"progress: {percent:.0f}%\n", kind="progress"))
                break
        return updates

    def _append_text(self, text: str) -> None:
        self._text.append(text)
        self._text_len += len(text)

    def _scan_if_allowed(self) -> None:
        if not self._state.authoritative:
            self._scan_text(final=False)

    def _scan_text(self, *, final: bool) -> None:
        text = self.transcript
        start = self._state.cursor
        for match in self._classifier.candidate_pattern.finditer(text, start):
            if match.end() >= len(text) and not final:
                # The next delta may continue this URL.
                self._state.cursor = match.start()
                return
            self._state.cursor = match.end()
            url = self._classifier.normalize(match.group(0))
            if url and self._classifier.looks_like_media(url):
                self._record(url, source="text")
        if final:
            self._state.cursor = len(text)

    def _final_scan(self) -> None:
        for match in ANY_URL.finditer(self.transcript):
            url = self._classifier.normalize(match.group(0))
            if url:
                self._record(url, source="final_scan")

    def _record(self, raw: str, *, source: str) -> None:
        url = self._classifier.normalize(raw)
        if url is None:
            logger.debug("Ignoring unresolvable URL", extra={"url": raw})
            return
        slot = self._classifier.classify(url)
        if self.result_urls.set_if_absent(slot, url):
            self._state.sources[slot] = source
            logger.info("Recovered result URL", extra={"slot": slot.value, "source": source})
        if source == "output":
            self._state.authoritative = True


def _delta_objects(data: dict[str, Any]) -> list[dict[str, Any]]:
    """The top-level object plus every ``choices[*].delta``/``message``."""
    objects = [data]
    choices = data.get("choices")
    if isinstance(choices, list):
        for choice in choices:
            if not isinstance(choice, dict):
                continue
            for key in ("delta", "message"):
                inner = choice.get(key)
                if isinstance(inner, dict):
                    objects.append(inner)
    return objects


def _output_urls(delta: dict[str, Any]) -> list[str]:
    output = delta.get("output")
    if isinstance(output, dict):
        output = [output]
    if not isinstance(output, list):
        return []
    urls = []
    for item in output:
        if isinstance(item, dict) and isinstance(item.get("url"), str):
            urls.append(item["url"])
        elif isinstance(item, str):
            urls.append(item)
    return urls
