from streakr import db
from streakr.models import AdminAction, QuestionComment
from streakr.models.comment import MAX_COMMENT_LENGTH

QID = "R1-G1-Q1"


def test_comment_thread(client, make_user, make_question, login):
    make_user("alice", display_name="Al")
    make_question(QID)
    login("alice")

    assert client.get(f"/api/comments/{QID}").get_json() == {"items": []}

    first = client.post(f"/api/comments/{QID}", json={"body": "  Blues by a kick  "})
    second = client.post(f"/api/comments/{QID}", json={"body": "x" * 500})

    assert first.status_code == 201
    assert first.get_json()["comment"]["body"] == "Blues by a kick"
    assert second.status_code == 201

    items = client.get(f"/api/comments/{QID}").get_json()["items"]
    assert [len(item["body"]) for item in items] == [MAX_COMMENT_LENGTH, len("Blues by a kick")]
    assert items[0]["displayName"] == "Al"


def test_comment_validation(client, make_user, make_question, login):
    make_question(QID)

    assert client.post(f"/api/comments/{QID}", json={"body": "hi"}).status_code == 401

    make_user("alice")
    login("alice")
    assert client.post(f"/api/comments/{QID}", json={"body": "   "}).status_code == 400
    assert client.post(f"/api/comments/{QID}", json={}).status_code == 400
    assert client.post("/api/comments/R9-G1-Q1", json={"body": "hi"}).status_code == 404
    assert QuestionComment.query.count() == 0


def test_admin_removes_comment(client, admin_headers, make_user, make_question):
    alice = make_user("alice")
    make_question(QID)
    comment = QuestionComment(season=2026, question_id=QID, user_id=alice.id, body="spam")
    db.session.add(comment)
    db.session.commit()

    response = client.delete(f"/api/admin/comments/{comment.id}", headers=admin_headers)
    missing = client.delete("/api/admin/comments/999", headers=admin_headers)

    assert response.status_code == 200
    assert missing.status_code == 404
    assert client.get(f"/api/comments/{QID}").get_json() == {"items": []}
    action = AdminAction.query.one()
    assert action.action_type == "remove_comment"
    assert action.action_metadata == {"commentId": comment.id, "userId": alice.id}
