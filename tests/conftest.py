from datetime import datetime, timedelta, timezone

import pytest

from streakr import cache, create_app, db
from streakr.models import Game, Pick, Question, Round, User

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}
SEASON = 2026


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        db.drop_all()
        db.create_all()
        cache.clear()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def make_user(app):
    def _make_user(username, password="password123", is_admin=False, **kwargs):
        user = User(
            username=username,
            email=kwargs.pop("email", f"{username}@example.com"),
            is_admin=is_admin,
            **kwargs,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_game(app):
    def _make_game(game_id, round_number=1, match="Carlton vs Richmond", starts_in_hours=24, **kwargs):
        Round.get_or_create(SEASON, round_number)
        game = Game(
            id=game_id,
            season=SEASON,
            round_number=round_number,
            match=match,
            venue=kwargs.pop("venue", "MCG"),
            start_time=datetime.now(timezone.utc).replace(tzinfo=None)
            + timedelta(hours=starts_in_hours),
            **kwargs,
        )
        db.session.add(game)
        db.session.commit()
        return game

    return _make_game


@pytest.fixture
def make_question(app):
    def _make_question(question_id, round_number=1, game_id=None, status="open", outcome=None, **kwargs):
        question = Question(
            season=SEASON,
            round_number=round_number,
            question_id=question_id,
            game_id=game_id,
            prompt=kwargs.pop("prompt", "Will Carlton win?"),
            quarter=kwargs.pop("quarter", 1),
            status=status,
            outcome=outcome,
            **kwargs,
        )
        db.session.add(question)
        db.session.commit()
        return question

    return _make_question


@pytest.fixture
def make_pick(app):
    def _make_pick(user, question_id, selection, round_number=1, game_id=None):
        pick = Pick(
            user_id=user.id,
            question_id=question_id,
            round_number=round_number,
            game_id=game_id,
            selection=selection,
        )
        db.session.add(pick)
        db.session.commit()
        return pick

    return _make_pick


@pytest.fixture
def login(client):
    def _login(username, password="password123"):
        response = client.post(
            "/auth/login", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.get_json()
        return response

    return _login
