from models import db, Vote


def test_vote_json_round_trip(app, client, make_user, make_thread, login):
    alice = make_user()
    thread_id = make_thread(alice)
    login()

    resp = client.post(f"/vote/thread/{thread_id}", json={"direction": "up"})
    assert resp.get_json() == {"upvotes": 1, "downvotes": 0, "score": 1, "vote": "up"}

    resp = client.post(f"/vote/thread/{thread_id}", json={"direction": "down"})
    assert resp.get_json() == {"upvotes": 0, "downvotes": 1, "score": -1, "vote": "down"}

    resp = client.post(f"/vote/thread/{thread_id}", json={"direction": "down"})
    assert resp.get_json() == {"upvotes": 0, "downvotes": 0, "score": 0, "vote": None}
    with app.app_context():
        assert Vote.query.count() == 0


def test_vote_form_redirects_to_thread(client, make_user, make_thread, make_comment, login):
    alice = make_user()
    thread_id = make_thread(alice)
    comment_id = make_comment(thread_id, alice)
    login()

    resp = client.post(f"/vote/comment/{comment_id}", data={"direction": "up"})
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith(f"/thread/{thread_id}")

    page = client.get(f"/thread/{thread_id}")
    assert b'<span class="score">1</span>' in page.data


def test_vote_rejects_bad_input(client, make_user, make_thread, login):
    alice = make_user()
    thread_id = make_thread(alice)
    login()

    resp = client.post(f"/vote/thread/{thread_id}", json={"direction": "sideways"})
    assert resp.status_code == 400
    resp = client.post(f"/vote/category/{thread_id}", json={"direction": "up"})
    assert resp.status_code == 400
    resp = client.post("/vote/thread/999", json={"direction": "up"})
    assert resp.status_code == 404
    resp = client.post(f"/vote/thread/{thread_id}", json=["up"])
    assert resp.status_code == 400
    resp = client.post(f"/vote/thread/{thread_id}", json="up")
    assert resp.status_code == 400


def test_votes_are_per_user(app, client, make_user, make_thread, login):
    alice = make_user("alice")
    make_user("bob")
    thread_id = make_thread(alice)

    login("alice")
    client.post(f"/vote/thread/{thread_id}", json={"direction": "up"})
    client.get("/logout")
    login("bob")
    resp = client.post(f"/vote/thread/{thread_id}", json={"direction": "up"})
    assert resp.get_json()["upvotes"] == 2
    with app.app_context():
        assert db.session.query(Vote).count() == 2
