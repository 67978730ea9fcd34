from typing import Generator, Optional

import pytest
from flask import Flask
from flask.testing import FlaskClient
from flask_bcrypt import generate_password_hash

from app import create_app
from config import TestConfig
from models import db, Category, Comment, Thread, User

PASSWORD = "secret123"


@pytest.fixture
def app() -> Generator[Flask, None, None]:
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()


@pytest.fixture
def ctx(app: Flask) -> Generator[None, None, None]:
    with app.app_context():
        yield


def _save(app: Flask, obj) -> int:
    with app.app_context():
        db.session.add(obj)
        db.session.commit()
        return obj.id


@pytest.fixture
def make_user(app: Flask):
    def factory(username: str = "alice", role: str = "member", **fields) -> int:
        user = User(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            password_hash=generate_password_hash(PASSWORD, 4).decode("utf-8"),
            role=role,
            **fields,
        )
        return _save(app, user)

    return factory


@pytest.fixture
def make_category(app: Flask):
    def factory(name: str = "General", description: str = "Talk about anything") -> int:
        return _save(app, Category(name=name, description=description))

    return factory


@pytest.fixture
def category_id(make_category) -> int:
    return make_category()


@pytest.fixture
def make_thread(app: Flask, category_id: int):
    def factory(author_id: int, title: str = "Hello", content: str = "First post", **fields) -> int:
        fields.setdefault("category_id", category_id)
        return _save(app, Thread(title=title, content=content, author_id=author_id, **fields))

    return factory


@pytest.fixture
def make_comment(app: Flask):
    def factory(thread_id: int, author_id: int, content: str = "A comment",
                parent_id: Optional[int] = None) -> int:
        return _save(app, Comment(thread_id=thread_id, author_id=author_id, content=content,
                                  parent_id=parent_id))

    return factory


@pytest.fixture
def login(client: FlaskClient):
    def do_login(username: str = "alice", password: str = PASSWORD):
        return client.post("/login", data={"username": username, "password": password})

    return do_login
