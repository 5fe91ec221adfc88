"""Kind 9734 zap request extraction from paid invoice metadata.

The invoice description carries the zap request in one of two encodings:
  - the 9734 note itself, as a JSON object with kind 9734
  - legacy LNURL metadata: a JSON list of [mime, value] pairs where the
    "application/nostr" entry holds the note

The note is accepted only if it names exactly one payee ('p'), at most one
zapped note ('e') and exactly one 'relays' tag. Anything else is logged
against the invoice label and skipped; extraction never raises on bad input.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)

ZAP_REQUEST_KIND = 9734
NOSTR_MIME_TYPE = "application/nostr"
RELAY_URL_PREFIXES = ("ws://", "wss://")


@dataclass(frozen=True)
class PTag:
    """The zapped pubkey. extra holds any trailing elements (relay hint)."""

    pubkey: str
    extra: tuple[str, ...] = ()

    def to_list(self) -> list[str]:
        return ["p", self.pubkey, *self.extra]


@dataclass(frozen=True)
class ETag:
    """The zapped note, if the zap targets a note rather than a profile."""

    event_id: str
    extra: tuple[str, ...] = ()

    def to_list(self) -> list[str]:
        return ["e", self.event_id, *self.extra]


@dataclass(frozen=True)
class RelaysTag:
    """Websocket relays the tipper wants the receipt published to."""

    urls: tuple[str, ...]


@dataclass(frozen=True)
class ZapRequest:
    """A validated 9734 zap request."""

    p_tag: PTag
    e_tag: ETag | None
    relays: RelaysTag
    content: str
    pubkey: str | None = None


def _is_tag(tag: Any, name: str) -> bool:
    return isinstance(tag, list) and len(tag) >= 1 and tag[0] == name


def _all_strings(tag: list) -> bool:
    return all(isinstance(item, str) for item in tag)


def find_request_note(parsed: Any) -> dict | None:
    """Locate the 9734 note in parsed description JSON, or None."""
    if isinstance(parsed, dict) and parsed.get("kind") == ZAP_REQUEST_KIND:
        return parsed

    if isinstance(parsed, list):
        for entry in parsed:
            if isinstance(entry, list) and len(entry) >= 2 and entry[0] == NOSTR_MIME_TYPE:
                note = entry[1]
                if isinstance(note, str):
                    try:
                        note = json.loads(note)
                    except ValueError:
                        return None
                return note if isinstance(note, dict) else None
    return None


def extract_zap_request(description: str | None, label: str) -> ZapRequest | None:
    """Parse and validate the zap request embedded in an invoice description.

    Args:
        description: raw invoice description (JSON text)
        label: invoice label, used only for diagnostics

    Returns a ZapRequest, or None if the invoice is not a valid zap.
    """
    if not description:
        log.warning("Invoice %s: no description, not a zap invoice", label)
        return None

    # -- Parse metadata --
    try:
        parsed = json.loads(description)
    except ValueError:
        log.warning("Invoice %s: could not parse description as JSON", label)
        return None

    # -- Locate the 9734 note --
    note = find_request_note(parsed)
    if note is None:
        log.warning("Invoice %s: no %s zap request in description", label, NOSTR_MIME_TYPE)
        return None

    tags = note.get("tags")
    if not isinstance(tags, list) or not tags:
        log.warning("Invoice %s: zap request has no tags", label)
        return None

    # -- Exactly one p tag --
    p_tags = [t for t in tags if _is_tag(t, "p") and len(t) >= 2]
    if len(p_tags) != 1:
        log.warning("Invoice %s: expected exactly one p tag, found %d", label, len(p_tags))
        return None
    if not _all_strings(p_tags[0]):
        log.warning("Invoice %s: p tag contains non-string values", label)
        return None

    # -- Zero or one e tag --
    e_tags = [t for t in tags if _is_tag(t, "e")]
    if len(e_tags) > 1:
        log.warning("Invoice %s: expected at most one e tag, found %d", label, len(e_tags))
        return None
    if e_tags and len(e_tags[0]) < 2:
        log.debug("Invoice %s: ignoring e tag without an event id", label)
        e_tags = []
    if e_tags and not _all_strings(e_tags[0]):
        log.warning("Invoice %s: e tag contains non-string values", label)
        return None

    # -- Exactly one relays tag --
    relays_tags = [t for t in tags if _is_tag(t, "relays")]
    if len(relays_tags) != 1:
        log.warning("Invoice %s: expected exactly one relays tag, found %d", label, len(relays_tags))
        return None

    urls: list[str] = []
    for url in relays_tags[0][1:]:
        if isinstance(url, str) and url.startswith(RELAY_URL_PREFIXES):
            if url not in urls:
                urls.append(url)
        else:
            log.debug("Invoice %s: dropping non-websocket relay %r", label, url)

    # -- Content --
    content = note.get("content", "")
    if content is None:
        content = ""
    if not isinstance(content, str):
        log.warning("Invoice %s: zap request content is not a string", label)
        return None

    pubkey = note.get("pubkey")
    p_tag = p_tags[0]
    e_tag = ETag(e_tags[0][1], tuple(e_tags[0][2:])) if e_tags else None

    return ZapRequest(
        p_tag=PTag(p_tag[1], tuple(p_tag[2:])),
        e_tag=e_tag,
        relays=RelaysTag(tuple(urls)),
        content=content,
        pubkey=pubkey if isinstance(pubkey, str) else None,
    )
