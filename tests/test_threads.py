from models import db, Comment, Tag, Thread, Vote


def test_index_and_listings_render(client, make_user, make_thread):
    alice = make_user()
    make_thread(alice, title="Pinned rules", is_pinned=True)
    make_thread(alice, title="Featured pick", is_featured=True)

    home = client.get("/")
    assert home.status_code == 200
    assert b"Pinned rules" in home.data
    assert b"Featured pick" in home.data

    for kind in ("recent", "popular", "unanswered", "featured"):
        assert client.get(f"/threads/{kind}").status_code == 200
    assert client.get("/threads/bogus").status_code == 404


def test_listing_search_filters(client, make_user, make_thread):
    alice = make_user()
    make_thread(alice, title="Flask routing")
    make_thread(alice, title="Gardening")

    resp = client.get("/threads/recent?q=flask")
    assert b"Flask routing" in resp.data
    assert b"Gardening" not in resp.data

    resp = client.get("/search?q=garden")
    assert b"Gardening" in resp.data


def test_listing_paginates(app, client, make_user, make_thread):
    alice = make_user()
    for i in range(12):
        make_thread(alice, title=f"Thread number {i:02d}")

    first = client.get("/threads/recent")
    second = client.get("/threads/recent?page=2")
    assert first.data.count(b"Thread number") == app.config["THREADS_PER_PAGE"]
    assert second.data.count(b"Thread number") == 2
    assert b"Page 2 of 2" in second.data


def test_create_thread_with_tags(app, client, make_user, category_id, login):
    make_user()
    login()
    resp = client.post("/threads/new", data={
        "title": "How do I test Flask?", "content": "Looking for tips", "category": category_id,
        "tags": "Testing, flask",
    })
    assert resp.status_code == 302

    with app.app_context():
        thread = Thread.query.one()
        assert thread.tag_names == ["flask", "testing"]
        assert resp.headers["Location"].endswith(f"/thread/{thread.id}")


def test_create_thread_from_category_route(app, client, make_user, category_id, login):
    make_user()
    login()
    assert client.get(f"/category/{category_id}/create_thread").status_code == 200
    resp = client.post(f"/category/{category_id}/create_thread", data={"title": "Hi", "content": "there"})
    assert resp.status_code == 302
    with app.app_context():
        assert Thread.query.one().category_id == category_id


def test_create_thread_validation(client, make_user, category_id, login):
    make_user()
    login()
    resp = client.post("/threads/new", data={"title": "", "content": "x", "category": category_id})
    assert resp.status_code == 400

    resp = client.post("/threads/new", data={
        "title": "t", "content": "c", "category": category_id, "tags": "a,b,c,d,e,f",
    })
    assert resp.status_code == 400
    assert b"at most 5 tags" in resp.data


def test_create_thread_requires_login(client, category_id):
    resp = client.post("/threads/new", data={"title": "t", "content": "c", "category": category_id})
    assert resp.status_code == 302
    assert "/login" in resp.headers["Location"]


def test_view_thread_shows_nested_comments(client, make_user, make_thread, make_comment):
    alice = make_user()
    thread_id = make_thread(alice, title="Nested")
    root = make_comment(thread_id, alice, content="root comment")
    make_comment(thread_id, alice, content="child comment", parent_id=root)

    resp = client.get(f"/thread/{thread_id}")
    assert resp.status_code == 200
    body = resp.data.decode()
    assert body.index("root comment") < body.index("child comment")
    assert "margin-left: 2em" in body
    assert "2 Comments" in body


def test_view_missing_thread_is_404(client):
    resp = client.get("/thread/404")
    assert resp.status_code == 404
    assert b"Nothing here" in resp.data


def test_edit_thread_only_by_author(app, client, make_user, make_thread, login):
    alice = make_user("alice")
    make_user("bob")
    thread_id = make_thread(alice)

    login("bob")
    assert client.post(f"/thread/{thread_id}/edit", data={"title": "x", "content": "y"}).status_code == 403
    client.get("/logout")

    login("alice")
    resp = client.post(f"/thread/{thread_id}/edit", data={"title": "New title", "content": "New body", "tags": "x"})
    assert resp.status_code == 302
    with app.app_context():
        thread = db.session.get(Thread, thread_id)
        assert thread.title == "New title"
        assert thread.tag_names == ["x"]


def test_delete_thread_removes_comments_and_votes(app, client, make_user, make_thread, make_comment, login):
    alice = make_user()
    thread_id = make_thread(alice)
    comment_id = make_comment(thread_id, alice)
    make_comment(thread_id, alice, parent_id=comment_id)
    login()
    client.post(f"/vote/thread/{thread_id}", data={"direction": "up"})
    client.post(f"/vote/comment/{comment_id}", data={"direction": "up"})

    resp = client.post(f"/thread/{thread_id}/delete")
    assert resp.status_code == 302
    with app.app_context():
        assert db.session.get(Thread, thread_id) is None
        assert Comment.query.count() == 0
        assert Vote.query.count() == 0


def test_staff_can_pin_and_feature(app, client, make_user, make_thread, login):
    author = make_user("alice")
    make_user("mod", role="moderator")
    thread_id = make_thread(author)

    login("alice")
    assert client.post(f"/thread/{thread_id}/pin").status_code == 403
    client.get("/logout")

    login("mod")
    client.post(f"/thread/{thread_id}/pin")
    client.post(f"/thread/{thread_id}/feature")
    with app.app_context():
        thread = db.session.get(Thread, thread_id)
        assert thread.is_pinned and thread.is_featured


def test_tag_page(app, client, make_user, make_thread):
    alice = make_user()
    thread_id = make_thread(alice, title="Tagged thread")
    with app.app_context():
        thread = db.session.get(Thread, thread_id)
        thread.tags = [Tag(name="python")]
        db.session.commit()

    resp = client.get("/tag/python")
    assert b"Tagged thread" in resp.data


def test_my_threads_lists_only_own(client, make_user, make_thread, login):
    alice = make_user("alice")
    bob = make_user("bob")
    make_thread(alice, title="Mine")
    make_thread(bob, title="Not mine")
    login("alice")

    resp = client.get("/my/threads")
    assert b"Mine" in resp.data
    assert b"Not mine" not in resp.data


def test_categories_and_category_view(client, make_user, make_thread, make_category, category_id):
    make_category("Announcements", "News")
    alice = make_user()
    make_thread(alice, title="In general")

    resp = client.get("/categories?q=news")
    assert b"Announcements" in resp.data
    assert b"General" not in resp.data

    resp = client.get(f"/category/{category_id}")
    assert b"In general" in resp.data
    assert client.get("/category/999").status_code == 404


def test_admin_creates_category(app, client, make_user, login):
    make_user("root", role="admin")
    make_user("alice")

    login("alice")
    assert client.post("/admin/create_category", data={"name": "Nope"}).status_code == 403
    client.get("/logout")

    login("root")
    resp = client.post("/admin/create_category", data={"name": "Show and Tell", "description": "Share"})
    assert resp.status_code == 302
    resp = client.post("/admin/create_category", data={"name": "Show and Tell"})
    assert resp.status_code == 400


def test_static_pages(client):
    assert b"Community Guidelines" in client.get("/pages/guidelines").data
    assert client.get("/pages/nope").status_code == 404


def test_markdown_escapes_code_once(app):
    render = app.jinja_env.filters["markdown"]
    html = render("`a < b && c`\n\n> quoted")
    assert "<code>a &lt; b &amp;&amp; c</code>" in html
    assert "<blockquote>" in html


def test_markdown_renders_raw_html_as_text(app, client, make_user, make_thread):
    html = app.jinja_env.filters["markdown"]("<script>alert(1)</script>\n\nhi <b>there</b>")
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "<b>" not in html

    thread_id = make_thread(make_user(), content="<img src=x onerror=alert(1)>")
    resp = client.get(f"/thread/{thread_id}")
    assert b"<img src=x" not in resp.data
