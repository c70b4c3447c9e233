import logging
import re

from flask import jsonify
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import IntegrityError

from streakr import db, limiter, login_manager
from streakr.models import User
from streakr.routes.auth import bp
from streakr.utils.decorators import add_security_headers, get_json_body

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,80}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@bp.route("/register", methods=["POST"])
@limiter.limit("5 per hour")
@add_security_headers
def register():
    data = get_json_body()
    username = str(data.get("username") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not USERNAME_PATTERN.match(username):
        return jsonify({"error": "Username must be 3-80 letters, digits, '.', '_' or '-'"}), 400
    if not EMAIL_PATTERN.match(email):
        return jsonify({"error": "A valid email address is required"}), 400
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({"error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}), 400

    if User.query.filter(
        (User.username == username) | (User.email == email)
    ).first():
        return jsonify({"error": "Username or email already registered"}), 409

    user = User(
        username=username,
        email=email,
        first_name=(data.get("firstName") or "").strip() or None,
        surname=(data.get("surname") or "").strip() or None,
        favourite_team=(data.get("favouriteTeam") or "").strip() or None,
        avatar_url=User.generate_avatar_url(username),
    )
    user.set_display_name(data.get("displayName"))
    user.set_password(password)

    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "Username or email already registered"}), 409

    login_user(user)
    logger.info(f"New user registered: {user.username}")
    return jsonify({"ok": True, "user": user.to_dict()}), 201


@bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
@add_security_headers
def login():
    data = get_json_body()
    username = str(data.get("username") or "").strip()
    password = data.get("password") or ""

    user = User.query.filter(
        (User.username == username) | (User.email == username.lower())
    ).first()

    if user is None or not user.check_password(password):
        return jsonify({"error": "Invalid username or password"}), 401

    if not user.is_active:
        return jsonify({"error": "Your account has been deactivated"}), 403

    login_user(user, remember=bool(data.get("rememberMe")))
    user.update_last_login()

    return jsonify({"ok": True, "user": user.to_dict()})


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@bp.route("/me")
@login_required
@add_security_headers
def me():
    data = current_user.to_dict()
    data["email"] = current_user.email
    data["leagueIds"] = current_user.get_league_ids()
    return jsonify(data)
