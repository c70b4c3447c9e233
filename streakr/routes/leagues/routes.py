import logging

from flask import jsonify
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from streakr import db
from streakr.models import League, LeagueMember, Venue
from streakr.routes.leagues import bp
from streakr.services.leaderboard_service import get_leaderboard
from streakr.utils.cache_utils import invalidate_leaderboards
from streakr.utils.decorators import add_security_headers, get_json_body, int_arg, require_admin
from streakr.utils.errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)


def _active_league_or_404(league_id):
    league = db.session.get(League, league_id)
    if league is None or not league.is_active:
        raise NotFound("League not found")
    return league


@bp.route("")
@login_required
def my_leagues():
    """Leagues the current user belongs to"""
    leagues = (
        League.query.join(LeagueMember, LeagueMember.league_id == League.id)
        .filter(
            LeagueMember.user_id == current_user.id,
            LeagueMember.is_active.is_(True),
            League.is_active.is_(True),
        )
        .order_by(League.name)
        .all()
    )
    return jsonify({"leagues": [league.to_dict() for league in leagues]})


@bp.route("", methods=["POST"])
@login_required
@add_security_headers
def create():
    """Create a league; the creator joins as its admin"""
    data = get_json_body()
    name = str(data.get("name") or "").strip()
    if not 3 <= len(name) <= 100:
        raise InvalidInput("League name must be 3-100 characters")

    venue_id = data.get("venueId")
    if venue_id is not None:
        venue = db.session.get(Venue, venue_id) if isinstance(venue_id, int) else None
        if venue is None or not venue.is_active:
            raise NotFound("Venue not found")

    max_members = data.get("maxMembers", 100)
    if isinstance(max_members, bool) or not isinstance(max_members, int) or not 2 <= max_members <= 1000:
        raise InvalidInput("maxMembers must be between 2 and 1000")

    try:
        league = League(
            name=name,
            description=(data.get("description") or "").strip() or None,
            venue_id=venue_id,
            max_members=max_members,
            creator_id=current_user.id,
        )
        db.session.add(league)
        db.session.flush()  # Get the league ID

        league.add_member(current_user.id, is_admin=True)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error creating league for user {current_user.id}: {e}", exc_info=True)
        return jsonify({"error": "Failed to create league"}), 500

    invalidate_leaderboards()
    logger.info(f"League '{league.name}' created by {current_user.username}")
    return jsonify({"ok": True, "league": league.to_dict()}), 201


@bp.route("/join", methods=["POST"])
@login_required
@add_security_headers
def join():
    """Join a league by invite code"""
    data = get_json_body()
    code = str(data.get("code") or "").strip().upper()
    if not code:
        raise InvalidInput("code is required")

    league = League.query.filter_by(invite_code=code).first()
    if league is None or not league.is_active:
        raise NotFound("Invalid invite code")

    member, message = league.add_member(current_user.id)
    if member is None:
        return jsonify({"error": message}), 409

    db.session.commit()
    invalidate_leaderboards()
    return jsonify({"ok": True, "message": message, "league": league.to_dict()})


@bp.route("/<int:league_id>")
@login_required
def detail(league_id):
    league = _active_league_or_404(league_id)
    if not league.is_user_member(current_user.id):
        return jsonify({"error": "Not a member of this league"}), 403

    data = league.to_dict()
    data["members"] = [
        {
            "userId": m.user_id,
            "displayName": m.user.full_name,
            "isAdmin": bool(m.is_admin),
        }
        for m in league.members.filter_by(is_active=True)
    ]
    return jsonify(data)


@bp.route("/<int:league_id>/leave", methods=["POST"])
@login_required
def leave(league_id):
    league = _active_league_or_404(league_id)
    member = league.members.filter_by(user_id=current_user.id, is_active=True).first()
    if member is None:
        return jsonify({"error": "You are not a member of this league"}), 400

    # The creator cannot leave while they are the only admin
    if league.creator_id == current_user.id:
        other_admins = (
            league.members.filter_by(is_admin=True, is_active=True)
            .filter(LeagueMember.user_id != current_user.id)
            .count()
        )
        if other_admins == 0:
            return jsonify({"error": "Promote another member to admin before leaving"}), 400

    member.deactivate()
    db.session.commit()
    invalidate_leaderboards()
    return jsonify({"ok": True})


@bp.route("/<int:league_id>/ladder")
@login_required
@add_security_headers
def ladder(league_id):
    league = _active_league_or_404(league_id)
    if not league.is_user_member(current_user.id):
        return jsonify({"error": "Not a member of this league"}), 403
    return jsonify(
        get_leaderboard("league", scope_id=league.id, user_id=current_user.id, limit=int_arg("limit"))
    )


@bp.route("/venues")
def venues():
    items = Venue.query.filter_by(is_active=True).order_by(Venue.name).all()
    return jsonify({"venues": [venue.to_dict() for venue in items]})


@bp.route("/venues", methods=["POST"])
@require_admin
def create_venue():
    data = get_json_body()
    name = str(data.get("name") or "").strip()
    if not name:
        raise InvalidInput("name is required")

    venue = Venue(
        name=name,
        suburb=(data.get("suburb") or "").strip() or None,
        state=(data.get("state") or "").strip().upper() or None,
    )
    db.session.add(venue)
    db.session.commit()
    return jsonify({"ok": True, "venue": venue.to_dict()}), 201


@bp.route("/venues/<int:venue_id>/ladder")
@add_security_headers
def venue_ladder(venue_id):
    user_id = current_user.id if current_user.is_authenticated else None
    return jsonify(
        get_leaderboard("venue", scope_id=venue_id, user_id=user_id, limit=int_arg("limit"))
    )
