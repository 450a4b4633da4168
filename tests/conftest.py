import os
from pathlib import Path

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)

import mongomock
import pytest

from checkout import OrderWorkflow
from errors import NotificationError
from schemas import Product, User
from stores import CartStore, CatalogStore, OrderStore, UserStore


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))
        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)


class RecordingNotifier:
    """Notifier double that keeps every message it is asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, to, subject, html):
        if self.fail:
            raise NotificationError("mail provider unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})


@pytest.fixture()
def mongo_db():
    client = mongomock.MongoClient()
    yield client["storefront_test"]
    client.close()


@pytest.fixture()
def catalog(mongo_db):
    return CatalogStore(mongo_db)


@pytest.fixture()
def carts(mongo_db):
    return CartStore(mongo_db)


@pytest.fixture()
def orders(mongo_db):
    return OrderStore(mongo_db)


@pytest.fixture()
def users(mongo_db):
    store = UserStore(mongo_db)
    store.ensure_indexes()
    return store


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def workflow(catalog, carts, orders, users, notifier):
    return OrderWorkflow(catalog, carts, orders, users, notifier=notifier)


@pytest.fixture()
def make_user(users):
    def _make(name="Jane Doe", email="jane@example.com", role="user"):
        return users.create(User(name=name, email=email, password_hash="x", salt="y", role=role))

    return _make


@pytest.fixture()
def make_product(catalog):
    def _make(name="Widget", price=100.0, stock=10, category="General"):
        return catalog.create_product(Product(name=name, price=price, stock=stock, category=category))

    return _make
