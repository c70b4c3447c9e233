import logging
import math
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import wraps

import requests
from flask import current_app

from streakr import cache
from streakr.utils.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


def retry_after_seconds(value, default):
    """
    Seconds to wait from a Retry-After header.

    Accepts delta-seconds or an HTTP date; anything unparseable falls back
    to ``default``.
    """
    if value is None:
        return default
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        pass
    else:
        return max(seconds, 0.0) if math.isfinite(seconds) else default
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return default
    if when is None:
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def rate_limit_decorator(max_retries=3, base_delay=1.0, backoff_factor=2.0):
    """
    Decorator to handle API rate limiting with exponential backoff
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(self, *args, **kwargs)
                except requests.exceptions.HTTPError as e:
                    status = e.response.status_code if e.response is not None else 0
                    # Only rate limiting and server errors are worth retrying
                    if status != 429 and status < 500:
                        raise
                    delay = base_delay * (backoff_factor**attempt)
                    if status == 429:
                        delay = retry_after_seconds(e.response.headers.get("Retry-After"), delay)
                    logger.warning(
                        f"Squiggle returned {status}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    if attempt < max_retries - 1:
                        time.sleep(delay)
                    else:
                        raise
                except requests.exceptions.RequestException as e:
                    delay = base_delay * (backoff_factor**attempt)
                    logger.warning(
                        f"Request failed: {e}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    if attempt < max_retries - 1:
                        time.sleep(delay)
                    else:
                        raise

            raise UpstreamUnavailable(f"Max retries ({max_retries}) exceeded")

        return wrapper

    return decorator


def to_status(raw_game):
    """Map Squiggle's is_final/complete fields onto scheduled/live/final"""
    if (raw_game.get("is_final") or 0) > 0:
        return "final"
    complete = raw_game.get("complete")
    if isinstance(complete, (int, float)) and 0 < complete < 100:
        return "live"
    # Squiggle leaves complete at 0 until the first bounce
    return "scheduled"


def _start_time_utc(raw_game):
    """Squiggle dates are venue-local; the tz field carries the offset"""
    text = str(raw_game.get("date") or "").strip()
    if not text:
        return None
    tz = raw_game.get("tz")
    try:
        start = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if start.tzinfo is None and tz:
            start = datetime.fromisoformat(f"{text}{tz}")
    except ValueError:
        logger.warning(f"Unparseable Squiggle date {text!r} for game {raw_game.get('id')}")
        return None
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return start.astimezone(timezone.utc).isoformat()


def _score(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def normalise_game(raw_game, team_names):
    """Flatten one Squiggle game record into the shape the API returns"""
    home_id = raw_game.get("hteam")
    away_id = raw_game.get("ateam")
    complete = raw_game.get("complete")
    return {
        "squiggleId": raw_game["id"],
        "year": raw_game.get("year"),
        "round": raw_game.get("round"),
        "startTimeUtc": _start_time_utc(raw_game),
        "homeTeam": team_names.get(home_id, str(home_id)),
        "awayTeam": team_names.get(away_id, str(away_id)),
        "venue": raw_game.get("venue") or None,
        "status": to_status(raw_game),
        "homeScore": _score(raw_game.get("hscore")),
        "awayScore": _score(raw_game.get("ascore")),
        "percentComplete": _score(complete),
    }


def find_game_for_id(games, game_id):
    """
    Match a local game id against normalised Squiggle games.

    ``game_id`` is any text naming the fixture (an id such as
    "R1-Carlton-vs-Richmond" or "R1-G3 Carlton vs Richmond"); a game matches
    when both its home and away team names occur in it.
    """
    needle = (game_id or "").lower()
    for game in games:
        home = (game.get("homeTeam") or "").lower()
        away = (game.get("awayTeam") or "").lower()
        if home and away and home in needle and away in needle:
            return game
    return None


class SquiggleClient:
    """
    Client for the Squiggle AFL API with rate limiting and a short TTL cache
    """

    def __init__(self, base_url=None, user_agent=None, session=None):
        self.base_url = base_url or current_app.config["SQUIGGLE_BASE_URL"]
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "User-Agent": user_agent or current_app.config["SQUIGGLE_USER_AGENT"],
                "Accept": "application/json",
            }
        )

        # Rate limiting configuration
        self.last_request_time = 0
        self.min_request_interval = 0.5  # Minimum 500ms between requests

    def _enforce_rate_limit(self):
        """Enforce a minimum gap between requests"""
        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.min_request_interval:
            time.sleep(self.min_request_interval - time_since_last)
        self.last_request_time = time.time()

    @rate_limit_decorator(max_retries=3, base_delay=1.0)
    def _query(self, query):
        """Run one Squiggle query string, e.g. 'games;year=2026;round=1'"""
        self._enforce_rate_limit()

        url = f"{self.base_url}?q={query};format=json"
        response = self.session.get(url, timeout=15)
        response.raise_for_status()
        return response.json()

    def _fetch_games(self, year, round_number):
        try:
            games_json = self._query(f"games;year={year};round={round_number}")
            teams_json = self._query(f"teams;year={year}")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Squiggle fetch failed for {year} round {round_number}: {e}")
            raise UpstreamUnavailable("Live score service unavailable") from e

        teams = teams_json.get("teams") if isinstance(teams_json, dict) else None
        team_names = {t.get("id"): t.get("name") for t in teams or [] if t.get("name")}

        raw_games = games_json.get("games") if isinstance(games_json, dict) else None
        return [
            normalise_game(g, team_names)
            for g in raw_games or []
            if isinstance(g, dict) and isinstance(g.get("id"), int) and g.get("date")
        ]

    def get_games(self, year, round_number):
        """
        Normalised games for a season round.

        Returns (games, cached) where ``cached`` says whether the list came
        from the TTL cache.
        """
        cache_key = f"squiggle_{year}_{round_number}"
        games = cache.get(cache_key)
        if games is not None:
            return games, True

        games = self._fetch_games(year, round_number)
        cache.set(
            cache_key, games, timeout=current_app.config.get("SQUIGGLE_CACHE_SECONDS", 30)
        )
        logger.debug(f"Fetched {len(games)} Squiggle games for {year} round {round_number}")
        return games, False

    def round_has_started(self, year, round_number):
        games, _ = self.get_games(year, round_number)
        return any(g["status"] in ("live", "final") for g in games)
