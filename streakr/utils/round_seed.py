"""
Round seeding from fixture spreadsheets

Each row describes one question:

    Round, Game, Match, Venue, StartTime, Question, Quarter, Status

Naive StartTime values are read in the application timezone. Header matching ignores case, spaces, underscores and dots, so "Start Time",
"start_time" and "StartTime" all work. Question ids are assigned in row
order per game: ``<RoundCode>-G<game>-Q<n>``. Re-seeding the same file
updates prompts and quarters in place without touching question status.
"""

import csv
import json
import logging
import os
from datetime import datetime

from streakr import db
from streakr.models import Game, Question, Round
from streakr.models.round import round_code, round_label_to_number
from streakr.utils.errors import InvalidInput
from streakr.utils.performance import timer
from streakr.utils.timezone_utils import convert_to_utc

logger = logging.getLogger(__name__)

SEEDABLE_STATUSES = ("open", "pending")


def norm_key(key):
    return "".join(ch for ch in str(key).lower() if ch not in " _.")


def row_value(row, key):
    target = norm_key(key)
    for k, v in row.items():
        if norm_key(k) == target:
            return v
    return None


def _text(value):
    return str(value if value is not None else "").strip()


def parse_start_time(value):
    """
    ISO timestamps; naive values are in the application timezone.
    Returned as naive UTC for storage.
    """
    text = _text(value)
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return convert_to_utc(parsed).replace(tzinfo=None)


def load_rows(path):
    """Read seed rows from a .json or .csv file"""
    ext = os.path.splitext(path)[1].lower()
    with open(path, newline="", encoding="utf-8") as fh:
        if ext == ".csv":
            return list(csv.DictReader(fh))
        if ext == ".json":
            data = json.load(fh)
            if isinstance(data, dict):
                data = data.get("rows") or data.get("questions") or []
            if not isinstance(data, list):
                raise InvalidInput(f"{path} does not contain a list of rows")
            return data
    raise InvalidInput(f"Unsupported seed file type: {ext or path}")


@timer
def seed_rows(rows, season):
    """
    Upsert rounds, games and questions from parsed rows.

    Returns counts ``{rounds, games, created, updated, skipped}``.
    """
    stats = {"rounds": 0, "games": 0, "created": 0, "updated": 0, "skipped": 0}
    question_index = {}
    seen_rounds = set()
    seen_games = set()

    for line, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            stats["skipped"] += 1
            continue

        round_number = round_label_to_number(row_value(row, "Round"))
        game_no = _text(row_value(row, "Game"))
        match = _text(row_value(row, "Match"))
        prompt = _text(row_value(row, "Question"))
        start_time = parse_start_time(row_value(row, "StartTime"))

        if round_number is None or not game_no.isdigit() or not match or not prompt or not start_time:
            logger.warning(f"Skipping seed row {line}: incomplete or malformed")
            stats["skipped"] += 1
            continue

        code = round_code(round_number)
        game_id = f"{code}-G{int(game_no)}"

        if round_number not in seen_rounds:
            Round.get_or_create(season, round_number)
            seen_rounds.add(round_number)

        game = db.session.get(Game, game_id)
        if game is None:
            game = Game(id=game_id, season=season, round_number=round_number)
            db.session.add(game)
        game.match = match
        game.venue = _text(row_value(row, "Venue")) or None
        game.start_time = start_time
        sport = _text(row_value(row, "Sport"))
        if sport:
            game.sport = sport.upper()
        seen_games.add(game_id)

        question_index[game_id] = question_index.get(game_id, 0) + 1
        question_id = f"{game_id}-Q{question_index[game_id]}"

        quarter_text = _text(row_value(row, "Quarter"))
        quarter = int(quarter_text) if quarter_text.isdigit() else 1

        question = Question.lookup(season, round_number, question_id)
        if question is None:
            status = _text(row_value(row, "Status")).lower() or "open"
            if status not in SEEDABLE_STATUSES:
                # final/void need an outcome, which only settlement provides
                logger.warning(
                    f"Seed row {line} asks for status {status!r}; creating {question_id} as open"
                )
                status = "open"
            question = Question(
                season=season,
                round_number=round_number,
                question_id=question_id,
                status=status,
            )
            db.session.add(question)
            stats["created"] += 1
        else:
            stats["updated"] += 1

        question.game_id = game_id
        question.prompt = prompt
        question.quarter = quarter

    db.session.commit()

    stats["rounds"] = len(seen_rounds)
    stats["games"] = len(seen_games)
    logger.info(
        f"Seeded season {season}: {stats['rounds']} rounds, {stats['games']} games, "
        f"{stats['created']} questions created, {stats['updated']} updated, "
        f"{stats['skipped']} rows skipped"
    )
    return stats
