"""
Leaderboard views

Read-only projections over the streak aggregates. Rankings reflect the last
committed aggregate writes; full rankings are cached per scope and the cache
generation is bumped after every settlement.

Scopes:
- overall: everyone with a streak record, ranked by longest streak
- round:   correct picks scored in one round, tie-break on current streak
- league:  active league members ranked by current streak
- venue:   active members of every league at a venue, by current streak
"""

import logging

from flask import current_app

from streakr import db
from streakr.models import League, ScoredPick, StreakAggregate, User, Venue
from streakr.utils.cache_utils import cached_leaderboard
from streakr.utils.errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)

SCOPES = ("overall", "round", "league", "venue")


def _entry(user, aggregate, score):
    return {
        "userId": user.id,
        "displayName": user.full_name,
        "avatarUrl": user.avatar_url or "",
        "currentStreak": aggregate.current_streak if aggregate else 0,
        "longestStreak": aggregate.longest_streak if aggregate else 0,
        "totalWins": aggregate.total_wins if aggregate else 0,
        "score": score,
    }


def _rank(entries, tiebreak=None):
    """
    Sort by score desc, then ``tiebreak`` desc when given, then display name,
    and assign competition ranks (1, 2, 2, 4) to rows that tie.
    """

    def tie(entry):
        return entry[tiebreak] if tiebreak else 0

    entries.sort(
        key=lambda e: (-e["score"], -tie(e), e["displayName"].lower(), e["userId"])
    )
    previous = None
    for position, entry in enumerate(entries, start=1):
        key = (entry["score"], tie(entry))
        if key != previous:
            rank = position
            previous = key
        entry["rank"] = rank
    return entries


def _members_by_current_streak(user_ids):
    if not user_ids:
        return []
    rows = (
        db.session.query(User, StreakAggregate)
        .outerjoin(StreakAggregate, StreakAggregate.user_id == User.id)
        .filter(User.id.in_(user_ids), User.is_active.is_(True))
        .all()
    )
    entries = [
        _entry(user, aggregate, aggregate.current_streak if aggregate else 0)
        for user, aggregate in rows
    ]
    return _rank(entries)


@cached_leaderboard("overall")
def overall_rankings():
    rows = (
        db.session.query(User, StreakAggregate)
        .join(StreakAggregate, StreakAggregate.user_id == User.id)
        .filter(User.is_active.is_(True))
        .all()
    )
    entries = [_entry(user, aggregate, aggregate.longest_streak) for user, aggregate in rows]
    return _rank(entries)


@cached_leaderboard("round")
def round_rankings(round_number):
    correct = db.func.sum(db.case((ScoredPick.is_correct.is_(True), 1), else_=0))
    rows = (
        db.session.query(User, StreakAggregate, correct.label("correct"))
        .join(ScoredPick, ScoredPick.user_id == User.id)
        .outerjoin(StreakAggregate, StreakAggregate.user_id == User.id)
        .filter(ScoredPick.round_number == round_number, User.is_active.is_(True))
        .group_by(User.id, StreakAggregate.user_id)
        .all()
    )
    entries = [
        _entry(user, aggregate, int(correct_count or 0))
        for user, aggregate, correct_count in rows
    ]
    return _rank(entries, tiebreak="currentStreak")


@cached_leaderboard("league")
def league_rankings(league_id):
    league = db.session.get(League, league_id)
    if league is None or not league.is_active:
        return None
    return _members_by_current_streak(league.active_member_ids())


@cached_leaderboard("venue")
def venue_rankings(venue_id):
    venue = db.session.get(Venue, venue_id)
    if venue is None or not venue.is_active:
        return None
    return _members_by_current_streak(venue.member_ids())


def get_leaderboard(scope="overall", scope_id=None, user_id=None, limit=None):
    """
    Build a leaderboard payload.

    ``scope_id`` is the round number, league id or venue id depending on the
    scope. Returns ``{scope, entries, userEntry, total}``; ``userEntry`` is the
    caller's own row (or None) even when it falls outside ``limit``.
    """
    if scope not in SCOPES:
        raise InvalidInput(f"Unknown leaderboard scope: {scope}")

    if scope == "overall":
        rankings = overall_rankings()
    else:
        if isinstance(scope_id, bool) or not isinstance(scope_id, int) or scope_id < 0:
            raise InvalidInput(f"A numeric id is required for the {scope} leaderboard")
        if scope == "round":
            rankings = round_rankings(scope_id)
        elif scope == "league":
            rankings = league_rankings(scope_id)
        else:
            rankings = venue_rankings(scope_id)

    if rankings is None:
        raise NotFound(f"{scope.capitalize()} {scope_id} not found")

    limit = limit or current_app.config.get("LEADERBOARD_LIMIT", 50)
    user_entry = None
    if user_id is not None:
        user_entry = next((e for e in rankings if e["userId"] == user_id), None)

    return {
        "scope": scope,
        "scopeId": scope_id,
        "entries": rankings[:limit],
        "userEntry": user_entry,
        "total": len(rankings),
    }


def get_profile(user_id, recent_limit=5):
    """Streak stats and recent scored picks for one user"""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")

    aggregate = user.streak
    scored = ScoredPick.query.filter_by(user_id=user_id)
    total_scored = scored.count()
    total_correct = scored.filter_by(is_correct=True).count()
    rounds_played = (
        db.session.query(ScoredPick.round_number)
        .filter_by(user_id=user_id)
        .distinct()
        .count()
    )
    recent = scored.order_by(ScoredPick.scored_at.desc(), ScoredPick.id.desc()).limit(
        recent_limit
    )

    return {
        "user": user.to_dict(include_streak=False),
        "currentStreak": aggregate.current_streak if aggregate else 0,
        "longestStreak": aggregate.longest_streak if aggregate else 0,
        "totalWins": aggregate.total_wins if aggregate else 0,
        "roundsPlayed": rounds_played,
        "correctPercentage": (
            round(total_correct / total_scored * 100) if total_scored else 0
        ),
        "recentPicks": [
            {
                "roundNumber": p.round_number,
                "questionId": p.question_id,
                "pick": p.selection,
                "outcome": p.outcome,
                "result": "correct" if p.is_correct else "wrong",
                "scoredAt": p.scored_at.isoformat() if p.scored_at else None,
            }
            for p in recent
        ],
    }
