"""External AI safety review client and verdict parsing.

The reviewer is an OpenRouter-compatible chat completions endpoint asked to
answer with a JSON object `{"status", "reason", "category"}`.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from chat_escrow.core.errors import ConfigurationError, ExternalServiceError
from chat_escrow.core.settings import Settings, settings
from chat_escrow.models import MODERATION_STATUS_FLAGGED, MODERATION_STATUS_SAFE

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Neutral"
PARSE_FALLBACK_REASON = "AI output parsing failed, but keyword detected."
FALLBACK_KEYWORDS = ("flagged", "unsafe")


@dataclass(frozen=True)
class SafeVerdict:
    reason: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class FlaggedVerdict:
    reason: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class ParseFailed:
    raw_text: str


Verdict = SafeVerdict | FlaggedVerdict | ParseFailed


@dataclass(frozen=True)
class Classification:
    """Final moderation outcome persisted on the message."""

    status: str
    reason: str | None
    category: str

    def as_dict(self) -> dict[str, Any]:
        return {"status": self.status, "reason": self.reason, "category": self.category}


def parse_verdict(raw_text: str) -> Verdict:
    """Parse the reviewer reply. Any status other than "flagged" means safe."""
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError:
        return ParseFailed(raw_text)
    if not isinstance(payload, dict):
        return ParseFailed(raw_text)

    reason = payload.get("reason") or None
    category = payload.get("category") or None
    if payload.get("status") == MODERATION_STATUS_FLAGGED:
        return FlaggedVerdict(reason=reason, category=category)
    return SafeVerdict(reason=reason, category=category)


def resolve_verdict(verdict: Verdict) -> Classification:
    """Turn a parsed verdict into a classification.

    Unparseable replies fall back to a keyword scan of the raw text.
    """
    if isinstance(verdict, ParseFailed):
        lowered = verdict.raw_text.lower()
        if any(keyword in lowered for keyword in FALLBACK_KEYWORDS):
            return Classification(MODERATION_STATUS_FLAGGED, PARSE_FALLBACK_REASON, DEFAULT_CATEGORY)
        return Classification(MODERATION_STATUS_SAFE, None, DEFAULT_CATEGORY)

    status = MODERATION_STATUS_FLAGGED if isinstance(verdict, FlaggedVerdict) else MODERATION_STATUS_SAFE
    return Classification(status, verdict.reason, verdict.category or DEFAULT_CATEGORY)


def build_review_messages(
    system_prompt: str,
    text: str | None,
    image: bytes | None,
    image_mime_type: str = "image/jpeg",
) -> list[dict[str, Any]]:
    """Build the multimodal chat payload: text segment plus inline image."""
    segments: list[dict[str, Any]] = []
    if text:
        segments.append({"type": "text", "text": text})
    if image:
        encoded = base64.b64encode(image).decode()
        segments.append(
            {
                "type": "image_url",
                "image_url": {"url": f"data:{image_mime_type};base64,{encoded}"},
            }
        )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": segments},
    ]


class SafetyReviewClient:
    """HTTP client for the external safety-review model."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str,
        system_prompt: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout_seconds: float = 60.0,
        app_url: str | None = None,
        app_title: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.system_prompt = system_prompt
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.app_url = app_url
        self.app_title = app_title
        self._transport = transport

    def ensure_configured(self) -> None:
        """Raise `ConfigurationError` when no API key is configured."""
        if not self.api_key:
            raise ConfigurationError("OpenRouter API key missing")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.app_url:
            headers["HTTP-Referer"] = self.app_url
        if self.app_title:
            headers["X-Title"] = self.app_title
        return headers

    async def review(self, text: str | None, image: bytes | None) -> Verdict:
        """Send one message to the reviewer and parse its verdict.

        Raises:
            ConfigurationError: If no API key is configured.
            ExternalServiceError: On transport failure, non-success status or
                an empty reply.
        """
        self.ensure_configured()
        body = {
            "model": self.model,
            "messages": build_review_messages(self.system_prompt, text, image),
            "response_format": {"type": "json_object"},
        }

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            transport=self._transport,
        ) as client:
            try:
                response = await client.post("/chat/completions", json=body, headers=self._headers())
            except httpx.HTTPError as exc:
                raise ExternalServiceError(f"Safety review request failed: {exc}") from exc

        if not response.is_success:
            logger.error("Safety review error %s: %s", response.status_code, response.text[:500])
            raise ExternalServiceError(f"Safety review API error: {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceError("Malformed response from safety review") from exc
        if not content:
            raise ExternalServiceError("Empty response from safety review")

        verdict = parse_verdict(content)
        if isinstance(verdict, ParseFailed):
            logger.warning("Failed to parse safety review output as JSON")
        return verdict


def build_safety_review_client(config: Settings | None = None) -> SafetyReviewClient:
    config = config or settings
    return SafetyReviewClient(
        config.openrouter_api_key,
        model=config.classifier_model,
        system_prompt=config.classifier_prompt,
        base_url=config.openrouter_base_url,
        timeout_seconds=config.classifier_http_timeout_seconds,
        app_url=config.classifier_app_url,
        app_title=config.classifier_app_title,
    )
