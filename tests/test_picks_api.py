from streakr import db
from streakr.models import Game, Pick


def _setup_round(make_user, make_game, make_question, starts_in_hours=24):
    make_user("alice")
    make_game("R1-G1", starts_in_hours=starts_in_hours)
    make_question("R1-G1-Q1", game_id="R1-G1", prompt="Will Carlton win Q1?")
    make_question("R1-G1-Q2", game_id="R1-G1", prompt="Will Richmond kick 5 goals?", quarter=2)


def test_submit_requires_login(client, make_user, make_game, make_question):
    _setup_round(make_user, make_game, make_question)

    response = client.post("/api/picks", json={"questionId": "R1-G1-Q1", "pick": "yes"})

    assert response.status_code == 401


def test_submit_then_change_pick(client, login, make_user, make_game, make_question):
    _setup_round(make_user, make_game, make_question)
    login("alice")

    created = client.post("/api/picks", json={"questionId": "R1-G1-Q1", "pick": "yes"})
    changed = client.post("/api/picks", json={"questionId": "R1-G1-Q1", "pick": "No"})

    assert created.status_code == 201
    assert created.get_json()["created"] is True
    assert changed.status_code == 200
    assert changed.get_json()["pick"]["pick"] == "no"
    assert Pick.query.count() == 1
    assert Pick.query.one().round_number == 1


def test_submit_rejects_bad_payloads(client, login, make_user, make_game, make_question):
    _setup_round(make_user, make_game, make_question)
    login("alice")

    assert client.post("/api/picks", json={"questionId": "R1-G1-Q1", "pick": "maybe"}).status_code == 400
    assert client.post("/api/picks", json={"pick": "yes"}).status_code == 400
    assert client.post("/api/picks", data="not json").status_code == 400
    assert client.post("/api/picks", json={"questionId": "R1-G1-Q9", "pick": "yes"}).status_code == 404
    mismatch = client.post(
        "/api/picks", json={"questionId": "R1-G1-Q1", "pick": "yes", "gameId": "R1-G2"}
    )
    assert mismatch.status_code == 400


def test_question_without_prefix_needs_round(client, login, make_user, make_game, make_question):
    _setup_round(make_user, make_game, make_question)
    make_question("bonus-1", round_number=1, game_id="R1-G1")
    login("alice")

    missing = client.post("/api/picks", json={"questionId": "bonus-1", "pick": "yes"})
    ok = client.post("/api/picks", json={"questionId": "bonus-1", "pick": "yes", "roundNumber": 1})

    assert missing.status_code == 400
    assert ok.status_code == 201


def test_locked_question_rejects_picks(client, login, make_user, make_game, make_question):
    _setup_round(make_user, make_game, make_question)
    make_question("R1-G1-Q3", game_id="R1-G1", status="pending")
    login("alice")

    response = client.post("/api/picks", json={"questionId": "R1-G1-Q3", "pick": "yes"})

    assert response.status_code == 409
    assert "pending" in response.get_json()["error"]


def test_started_game_locks_until_admin_unlocks(client, login, make_user, make_game, make_question):
    _setup_round(make_user, make_game, make_question, starts_in_hours=-1)
    login("alice")

    locked = client.post("/api/picks", json={"questionId": "R1-G1-Q1", "pick": "yes"})
    db.session.get(Game, "R1-G1").is_unlocked_for_picks = True
    db.session.commit()
    unlocked = client.post("/api/picks", json={"questionId": "R1-G1-Q1", "pick": "yes"})

    assert locked.status_code == 409
    assert unlocked.status_code == 201


def test_clear_pick(client, login, make_user, make_game, make_question):
    _setup_round(make_user, make_game, make_question)
    login("alice")
    client.post("/api/picks", json={"questionId": "R1-G1-Q1", "pick": "yes"})

    cleared = client.delete("/api/picks/R1-G1-Q1")
    again = client.delete("/api/picks/R1-G1-Q1")

    assert cleared.status_code == 200
    assert again.status_code == 404
    assert Pick.query.count() == 0


def test_round_picks_payload(client, login, make_user, make_game, make_question, make_pick):
    _setup_round(make_user, make_game, make_question)
    bob = make_user("bob")
    carol = make_user("carol")
    make_pick(bob, "R1-G1-Q1", "yes", game_id="R1-G1")
    make_pick(carol, "R1-G1-Q1", "no", game_id="R1-G1")
    login("alice")
    client.post("/api/picks", json={"questionId": "R1-G1-Q1", "pick": "yes"})

    data = client.get("/api/picks?round=1").get_json()

    assert data["roundNumber"] == 1
    game = data["games"][0]
    assert game["id"] == "R1-G1"
    assert game["isLocked"] is False
    assert game["startTimeLocal"] != "TBD"
    q1, q2 = game["questions"]
    assert q1["id"] == "R1-G1-Q1"
    assert (q1["yesPercent"], q1["noPercent"]) == (67, 33)
    assert q1["userPick"] == "yes"
    assert q1["sport"] == "AFL"
    assert (q2["yesPercent"], q2["noPercent"], q2["userPick"]) == (0, 0, None)


def test_round_picks_anonymous_defaults_to_current_round(client, make_user, make_game, make_question):
    _setup_round(make_user, make_game, make_question)

    data = client.get("/api/picks").get_json()

    assert data["roundNumber"] == 1
    assert all(q["userPick"] is None for q in data["games"][0]["questions"])


def test_question_stats(client, make_user, make_question, make_pick):
    make_question("R1-G1-Q1")
    for name, selection in (("a1", "yes"), ("a2", "yes"), ("a3", "yes"), ("a4", "no")):
        make_pick(make_user(name), "R1-G1-Q1", selection)

    assert client.get("/api/questions/R1-G1-Q1/stats").get_json() == {
        "total": 4,
        "yesPct": 75,
        "noPct": 25,
    }
    assert client.get("/api/questions/R1-G1-Q2/stats").get_json() == {
        "total": 0,
        "yesPct": 0,
        "noPct": 0,
    }
    assert client.get("/api/questions/custom/stats").status_code == 400
