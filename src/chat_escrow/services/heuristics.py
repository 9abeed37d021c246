"""Cheap local rules deciding whether a message needs AI safety review."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from chat_escrow.core.settings import Settings, settings

DEFAULT_WHITELIST: tuple[str, ...] = (
    "ok", "okay", "k", "kk", "yes", "yeah", "yep", "no", "nope", "sure",
    "lol", "lmao", "haha", "hahaha", "hehe", "omg", "wow", "nice", "cool",
    "thanks", "thank you", "thx", "ty", "np", "hi", "hey", "hello", "bye",
    "gm", "gn", "good morning", "good night", "night", "love you", "ily",
    "miss you", "same", "me too", "on my way", "omw", "brb", "xoxo",
)

DEFAULT_KEYWORD_TRIGGERS: tuple[str, ...] = (
    # self-harm
    "suicide", "suicidal", "kill myself", "end my life", "self harm", "self-harm",
    "cut myself", "want to die", "overdose",
    # violence
    "kill you", "hurt you", "beat you", "gun", "knife", "weapon", "bomb",
    "shoot", "stab",
    # explicit content involving minors or non-consent
    "underage", "minor", "child", "kid", "teen", "rape", "non-consensual",
    "without consent", "drugged",
)

_ALNUM_RE = re.compile(r"[^\W_]", re.UNICODE)
_EDGE_PUNCTUATION = " \t\r\n.!?,;:~'\"()[]*"


class HeuristicReason(str, Enum):
    """Why the pre-filter reached its decision."""

    DISABLED = "disabled"
    KEYWORD_TRIGGER = "keyword_trigger"
    NO_CONTENT = "no_content"
    LOW_SIGNAL = "low_signal"
    WHITELIST = "whitelist"
    SHORT_TEXT = "short_text"
    MEDIA_WITHOUT_TEXT = "media_without_text"
    DEFAULT = "default"


@dataclass(frozen=True)
class HeuristicDecision:
    needs_review: bool
    reason: HeuristicReason


def parse_list_value(value: str | None) -> list[str]:
    """Split a comma- or newline-separated list, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in re.split(r"[\n,]+", value) if item.strip()]


def _merge(defaults: tuple[str, ...], custom: list[str], use_defaults: bool) -> frozenset[str]:
    items = list(defaults) if use_defaults else []
    items.extend(custom)
    return frozenset(item.lower() for item in items)


@dataclass(frozen=True)
class HeuristicConfig:
    """Thresholds and word lists for the pre-filter."""

    enabled: bool = False
    min_text_length: int = 12
    whitelist_max_length: int = 30
    skip_if_no_alnum: bool = True
    skip_media_without_text: bool = False
    record_reason: bool = False
    whitelist: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_WHITELIST))
    keyword_triggers: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_KEYWORD_TRIGGERS)
    )

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> HeuristicConfig:
        config = config or settings
        return cls(
            enabled=config.heuristics_enabled,
            min_text_length=config.heuristic_min_text_length,
            whitelist_max_length=config.heuristic_whitelist_max_length,
            skip_if_no_alnum=config.heuristic_skip_if_no_alnum,
            skip_media_without_text=config.heuristic_skip_media_without_text,
            record_reason=config.heuristic_record_reason,
            whitelist=_merge(
                DEFAULT_WHITELIST,
                parse_list_value(config.heuristic_whitelist),
                config.heuristic_use_default_whitelist,
            ),
            keyword_triggers=_merge(
                DEFAULT_KEYWORD_TRIGGERS,
                parse_list_value(config.heuristic_keyword_triggers),
                config.heuristic_use_default_keywords,
            ),
        )


def contains_trigger(text: str, triggers: frozenset[str]) -> bool:
    """Case-insensitive match anchored at a word start.

    Inflections still fire ("guns", "stabbed") while "gun" does not fire on
    "begun".
    """
    lowered = text.lower()
    return any(re.search(rf"(?<!\w){re.escape(trigger)}", lowered) for trigger in triggers)


def evaluate(text: str | None, has_media: bool, config: HeuristicConfig) -> HeuristicDecision:
    """Decide whether a message needs AI review.

    `text` is the plaintext body (already decrypted for v2 rows). Keyword
    triggers win over every skip rule.
    """
    if not config.enabled:
        return HeuristicDecision(True, HeuristicReason.DISABLED)

    body = (text or "").strip()

    if body and contains_trigger(body, config.keyword_triggers):
        return HeuristicDecision(True, HeuristicReason.KEYWORD_TRIGGER)

    if not body and not has_media:
        return HeuristicDecision(False, HeuristicReason.NO_CONTENT)

    if not has_media:
        if config.skip_if_no_alnum and not _ALNUM_RE.search(body):
            return HeuristicDecision(False, HeuristicReason.LOW_SIGNAL)
        if len(body) < config.whitelist_max_length:
            normalized = " ".join(body.lower().strip(_EDGE_PUNCTUATION).split())
            if normalized in config.whitelist:
                return HeuristicDecision(False, HeuristicReason.WHITELIST)
        if len(body) < config.min_text_length:
            return HeuristicDecision(False, HeuristicReason.SHORT_TEXT)

    if has_media and not body and config.skip_media_without_text:
        return HeuristicDecision(False, HeuristicReason.MEDIA_WITHOUT_TEXT)

    return HeuristicDecision(True, HeuristicReason.DEFAULT)
