from pathlib import Path

import pytest

from finance_tracker import create_app
from finance_tracker.users import register_user, update_currency


@pytest.fixture()
def app(tmp_path: Path):
    db_path = tmp_path / "test.sqlite"
    app = create_app({"TESTING": True, "SECRET_KEY": "test", "DATABASE": str(db_path)})

    with app.app_context():
        app.init_db()

    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db(app):
    with app.app_context():
        yield app.get_db()


@pytest.fixture()
def make_user(db):
    def _make_user(email="owner@example.com", currency="USD"):
        user = register_user(db, email, "password123")
        if currency:
            update_currency(db, user["id"], currency)
        return user["id"]

    return _make_user
