from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import Mock, patch

import pytest
import requests

from streakr.utils.errors import UpstreamUnavailable
from streakr.utils.squiggle import (
    SquiggleClient,
    find_game_for_id,
    normalise_game,
    retry_after_seconds,
    to_status,
)

TEAMS = {"teams": [{"id": 3, "name": "Carlton"}, {"id": 14, "name": "Richmond"}]}
GAMES = {
    "games": [
        {
            "id": 101,
            "year": 2026,
            "round": 1,
            "date": "2026-03-12 19:40:00",
            "tz": "+11:00",
            "hteam": 3,
            "ateam": 14,
            "venue": "M.C.G.",
            "complete": 55,
            "is_final": 0,
            "hscore": 48,
            "ascore": 41,
        },
        {"id": "bad", "date": "2026-03-12"},
    ]
}


def _response(payload, status=200, headers=None):
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


class FakeSession:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _client(responses):
    client = SquiggleClient(session=FakeSession(responses))
    client.min_request_interval = 0
    return client


@pytest.mark.parametrize(
    "raw,expected",
    [
        ({"is_final": 1, "complete": 100}, "final"),
        ({"is_final": 0, "complete": 100}, "scheduled"),
        ({"complete": 40}, "live"),
        ({"complete": 0}, "scheduled"),
        ({}, "scheduled"),
    ],
)
def test_to_status(raw, expected):
    assert to_status(raw) == expected


def test_normalise_game_converts_to_utc():
    game = normalise_game(GAMES["games"][0], {3: "Carlton", 14: "Richmond"})

    assert game["startTimeUtc"] == "2026-03-12T08:40:00+00:00"
    assert (game["homeTeam"], game["awayTeam"]) == ("Carlton", "Richmond")
    assert game["status"] == "live"
    assert (game["homeScore"], game["awayScore"], game["percentComplete"]) == (48, 41, 55)


def test_find_game_for_id():
    games = [{"homeTeam": "Carlton", "awayTeam": "Richmond"}]

    assert find_game_for_id(games, "R1-G3 Carlton vs Richmond") is games[0]
    assert find_game_for_id(games, "R1-Carlton-vs-Essendon") is None
    assert find_game_for_id(games, None) is None


def test_get_games_fetches_then_caches(app):
    client = _client([_response(GAMES), _response(TEAMS)])

    games, cached = client.get_games(2026, 1)
    again, cached_again = client.get_games(2026, 1)

    assert cached is False
    assert cached_again is True
    assert again == games
    assert len(games) == 1
    assert games[0]["squiggleId"] == 101
    assert client.session.urls[0].endswith("?q=games;year=2026;round=1;format=json")
    assert client.session.headers["User-Agent"] == app.config["SQUIGGLE_USER_AGENT"]


@patch("streakr.utils.squiggle.time.sleep")
def test_server_errors_are_retried(sleep, app):
    client = _client(
        [_response({}, status=503), _response(GAMES), _response(TEAMS)]
    )

    games, _ = client.get_games(2026, 1)

    assert len(games) == 1
    sleep.assert_called()


@patch("streakr.utils.squiggle.time.sleep")
def test_unreachable_api_raises_upstream_unavailable(sleep, app):
    failure = requests.exceptions.ConnectionError("down")
    client = _client([failure, failure, failure])

    with pytest.raises(UpstreamUnavailable):
        client.get_games(2026, 2)


def test_client_errors_are_not_retried(app):
    client = _client([_response({}, status=404)])

    with pytest.raises(UpstreamUnavailable):
        client.get_games(2026, 3)
    assert len(client.session.urls) == 1


def test_round_has_started(app):
    scheduled = {"games": [dict(GAMES["games"][0], complete=0)]}
    client = _client([_response(scheduled), _response(TEAMS)])

    assert client.round_has_started(2026, 4) is False


def test_squiggle_endpoints(client, app, make_game):
    make_game("R1-G3", match="Carlton vs Richmond")

    with patch("streakr.routes.api.routes.SquiggleClient") as client_cls:
        client_cls.return_value.get_games.return_value = (
            [normalise_game(GAMES["games"][0], {3: "Carlton", 14: "Richmond"})],
            False,
        )
        games = client.get("/api/squiggle/games?year=2026&round=1")
        live = client.post(
            "/api/games/live-score",
            json={"season": 2026, "roundNumber": 1, "gameId": "R1-G3"},
        )
        missing = client.post(
            "/api/games/live-score",
            json={"season": 2026, "roundNumber": 1, "gameId": "R1-Geelong-vs-Collingwood"},
        )

    assert games.get_json()["cached"] is False
    assert live.get_json()["homeScore"] == 48
    assert live.get_json()["status"] == "live"
    assert missing.status_code == 404
    assert client.get("/api/squiggle/games?year=1999&round=1").status_code == 400
    assert client.post("/api/games/live-score", json={"season": "2026"}).status_code == 400


def test_retry_after_seconds():
    assert retry_after_seconds("7", 1.0) == 7.0
    assert retry_after_seconds(None, 1.0) == 1.0
    assert retry_after_seconds("soon", 2.0) == 2.0
    assert retry_after_seconds("nan", 2.0) == 2.0
    assert retry_after_seconds("Wed, 21 Oct 2015 07:28:00 GMT", 3.0) == 0.0
    ahead = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=30), usegmt=True)
    assert 0 < retry_after_seconds(ahead, 1.0) <= 30


@patch("streakr.utils.squiggle.time.sleep")
def test_rate_limit_with_http_date_is_retried(sleep, app):
    limited = _response({}, status=429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
    client = _client([limited, _response(GAMES), _response(TEAMS)])

    games, _ = client.get_games(2026, 5)

    assert len(games) == 1
    sleep.assert_called_once_with(0.0)
