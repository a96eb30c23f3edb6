"""
vision_client.py — Ask a vision-capable LLM what races a screenshot shows.

Two calls per image, both against an OpenAI-compatible ``/chat/completions``
endpoint:

  1. ``analyze_image``  — free-text reading of the screenshot
  2. ``extract_races``  — turn that text into ``{"races": [...]}`` JSON

Any failure (no API key, HTTP error, unparseable JSON) degrades to an empty
race list; nothing here raises into the bot.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import requests

import config
from net import build_session

logger = logging.getLogger(__name__)

_session = build_session()

ANALYSIS_PROMPT = """Analyze this racing screenshot and extract:
1. Race times (look for times like 3:30 PM, 15:30, etc.)
2. Race names or track information
3. Horse names and odds
4. Any countdown timers or "time to race" information
5. Current time shown in the image

Focus on identifying when races are scheduled and calculate time remaining.
If you see a betting site interface, extract all visible race information.
Return the information in a structured format."""

NORMALIZE_PROMPT = """You are a race data parser. Convert racing analysis into a standardized JSON format.

Return ONLY valid JSON with this exact structure:
{
    "races": [
        {
            "race": "R1",
            "name": "Flemington R1",
            "time": "14:30",
            "countdownMinutes": 25
        }
    ]
}

Rules:
- race: Use format like "R1", "R2", etc. or track name
- name: race or track name if visible, otherwise omit
- time: 24-hour format HH:MM
- countdownMinutes / countdownSeconds: numeric time until the race starts, only if shown
- Only include races that are upcoming (not completed)
- If no valid races found, return {"races": []}"""

FALLBACK_ANALYSIS = (
    "Racing content detected, but AI analysis is unavailable right now. "
    "Set OPENAI_API_KEY for automatic race extraction."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass
class ImageAnalysis:
    analysis: str
    payload:  dict[str, Any] = field(default_factory=lambda: {"races": []})
    enhanced: bool = False

    @property
    def races(self) -> list:
        races = self.payload.get("races") or self.payload.get("raceTimes") or []
        return races if isinstance(races, list) else []


def is_configured() -> bool:
    return bool(config.OPENAI_API_KEY)


def _chat(messages: list[dict[str, Any]], temperature: float | None = None) -> str:
    body: dict[str, Any] = {
        "model": config.VISION_MODEL,
        "messages": messages,
        "max_tokens": config.VISION_MAX_TOKENS,
    }
    if temperature is not None:
        body["temperature"] = temperature
    resp = _session.post(
        f"{config.OPENAI_BASE_URL.rstrip('/')}/chat/completions",
        headers={"Authorization": f"Bearer {config.OPENAI_API_KEY}"},
        json=body,
        timeout=config.REQUEST_TIMEOUT,
    )
    resp.raise_for_status()
    return resp.json()["choices"][0]["message"]["content"] or ""


def analyze_image(image_url: str) -> str:
    """Free-text description of the races visible in ``image_url``."""
    return _chat([{
        "role": "user",
        "content": [
            {"type": "text", "text": ANALYSIS_PROMPT},
            {"type": "image_url", "image_url": {"url": image_url}},
        ],
    }])


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


def extract_races(analysis: str) -> dict[str, Any]:
    """Normalise a free-text analysis into ``{"races": [...]}``."""
    try:
        content = _chat(
            [
                {"role": "system", "content": NORMALIZE_PROMPT},
                {"role": "user",
                 "content": f"Parse this racing analysis into the standardized format:\n\n{analysis}"},
            ],
            temperature=0.1,
        )
        parsed = json.loads(strip_code_fences(content))
    except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as exc:
        logger.error("Race normalisation failed: %s", exc)
        return {"races": []}
    if not isinstance(parsed, dict):
        logger.warning("Race normalisation returned %s, expected an object.", type(parsed).__name__)
        return {"races": []}
    return parsed


def analyze_racing_image(image_url: str) -> ImageAnalysis:
    """Full oracle round-trip for one screenshot."""
    if not is_configured():
        logger.info("OpenAI not configured — using fallback analysis.")
        return ImageAnalysis(analysis=FALLBACK_ANALYSIS)

    try:
        analysis = analyze_image(image_url)
    except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as exc:
        logger.error("Image analysis failed: %s", exc)
        return ImageAnalysis(analysis=FALLBACK_ANALYSIS)

    logger.info("AI analysis: %.200s", analysis)
    payload = extract_races(analysis)
    return ImageAnalysis(analysis=analysis, payload=payload, enhanced=True)
