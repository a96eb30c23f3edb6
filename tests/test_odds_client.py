"""Tests for odds-provider payload normalisation (no network)."""
import odds_client


def test_fetch_upcoming_events_normalises_rows(monkeypatch):
    monkeypatch.setattr(odds_client.config, "ODDS_API_TOKEN", "token")
    pages = {
        1: {"success": 1, "pager": {"page": 1, "per_page": 2, "total": 3}, "results": [
            {"id": "101", "time": "1773111900",
             "league": {"name": "Flemington"}, "home": {"name": "Race 1"}},
            {"id": "102", "time": None},
        ]},
        2: {"success": 1, "pager": {"page": 2, "per_page": 2, "total": 3}, "results": [
            {"id": 103, "time": 1773112500, "league": None, "home": {"name": "Race 2"}},
        ]},
    }
    calls = []

    def fake_get(path, params):
        calls.append(params["page"])
        return pages[params["page"]]

    monkeypatch.setattr(odds_client, "_get", fake_get)
    monkeypatch.setattr(odds_client.time, "sleep", lambda s: None)

    events = odds_client.fetch_upcoming_events("2")
    assert calls == [1, 2]
    assert events == [
        {"id": "101", "unixStartTime": 1773111900, "leagueName": "Flemington", "homeName": "Race 1"},
        {"id": "103", "unixStartTime": 1773112500, "leagueName": "", "homeName": "Race 2"},
    ]


def test_fetch_event_odds_walks_nested_payload(monkeypatch):
    monkeypatch.setattr(odds_client.config, "ODDS_API_TOKEN", "token")
    payload = {"success": 1, "results": [{
        "FI": "101",
        "main": {"sp": {"win": {"odds": [
            {"id": "1", "name": "Alpha", "odds": "5/2", "number": "1"},
            {"id": "2", "name": "Bravo", "odds": "4.50"},
        ]}}},
    }]}
    monkeypatch.setattr(odds_client, "_get", lambda path, params: payload)
    rows = odds_client.fetch_event_odds("101")
    assert rows == [
        {"runnerName": "Alpha", "runnerNumber": "1", "priceString": "5/2"},
        {"runnerName": "Bravo", "runnerNumber": None, "priceString": "4.50"},
    ]


def test_failures_and_missing_token_return_empty(monkeypatch):
    monkeypatch.setattr(odds_client.config, "ODDS_API_TOKEN", "")
    assert odds_client.fetch_upcoming_events() == []
    assert odds_client.fetch_event_odds("1") == []

    monkeypatch.setattr(odds_client.config, "ODDS_API_TOKEN", "token")
    monkeypatch.setattr(odds_client, "_get", lambda path, params: None)
    assert odds_client.fetch_upcoming_events() == []
    assert odds_client.fetch_event_odds("1") == []
