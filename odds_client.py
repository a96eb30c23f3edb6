"""
odds_client.py — Thin wrapper around the odds provider's REST API.

Two calls are used:
  - upcoming events for a sport  → ``{id, unixStartTime, leagueName, homeName}``
  - prices for a single event    → ``{runnerName, runnerNumber, priceString}``

Network and decoding failures are logged and returned as an empty list, so
callers simply see "no data this poll".
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

import config
from net import build_session

logger = logging.getLogger(__name__)

MAX_PAGES = 3

_session = build_session()


def is_configured() -> bool:
    return bool(config.ODDS_API_TOKEN)


def _get(path: str, params: dict[str, Any]) -> dict[str, Any] | None:
    url = f"{config.ODDS_API_BASE}{path}"
    try:
        resp = _session.get(
            url,
            params={**params, "token": config.ODDS_API_TOKEN},
            timeout=config.REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error("Odds API %s request failed: %s", path, exc)
        return None
    if not isinstance(data, dict) or not data.get("success", 1):
        logger.error("Odds API %s returned an error payload: %.200r", path, data)
        return None
    return data


# ── Upcoming events ──────────────────────────────────────────────────────────

def _event_row(raw: dict[str, Any]) -> dict[str, Any] | None:
    if not raw.get("id") or not raw.get("time"):
        return None
    try:
        start = int(raw["time"])
    except (TypeError, ValueError):
        return None
    return {
        "id": str(raw["id"]),
        "unixStartTime": start,
        "leagueName": (raw.get("league") or {}).get("name") or "",
        "homeName": (raw.get("home") or {}).get("name") or "",
    }


def fetch_upcoming_events(sport_id: str | None = None) -> list[dict[str, Any]]:
    """
    Fetch upcoming events for ``sport_id`` (defaults to ``config.ODDS_SPORT_ID``).

    Follows the provider's pager for at most ``MAX_PAGES`` pages.
    """
    if not is_configured():
        return []
    sport_id = sport_id or config.ODDS_SPORT_ID

    events: list[dict[str, Any]] = []
    for page in range(1, MAX_PAGES + 1):
        data = _get("/v1/bet365/upcoming", {"sport_id": sport_id, "page": page})
        if data is None:
            break
        results = data.get("results") or []
        events.extend(row for row in map(_event_row, results) if row)

        pager = data.get("pager") or {}
        try:
            per_page, total = int(pager.get("per_page", 0)), int(pager.get("total", 0))
        except (TypeError, ValueError):
            break
        if not results or page * per_page >= total:
            break
        time.sleep(0.25)

    logger.debug("Fetched %d upcoming events (sport %s).", len(events), sport_id)
    return events


# ── Event odds ───────────────────────────────────────────────────────────────

def _runner_rows(node: Any, out: list[dict[str, Any]]) -> None:
    """Collect every ``{name, odds}`` runner entry nested anywhere in ``node``."""
    if isinstance(node, list):
        for item in node:
            _runner_rows(item, out)
        return
    if not isinstance(node, dict):
        return
    if "odds" in node and "name" in node and not isinstance(node["odds"], (dict, list)):
        number = node.get("number", node.get("cloth"))
        out.append({
            "runnerName": str(node["name"]).strip(),
            "runnerNumber": number,
            "priceString": node["odds"],
        })
        return
    for value in node.values():
        _runner_rows(value, out)


def fetch_event_odds(event_id: str) -> list[dict[str, Any]]:
    """Current win prices for every runner in ``event_id``."""
    if not is_configured():
        return []
    data = _get("/v3/bet365/prematch", {"FI": event_id})
    if data is None:
        return []
    rows: list[dict[str, Any]] = []
    _runner_rows(data.get("results") or [], rows)
    logger.debug("Fetched %d runner prices for event %s.", len(rows), event_id)
    return rows
