import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import issue_token
from database import Store
from errors import UpstreamPaymentError
from main import create_app
from settings import Settings

SECRET = "test-secret"
ADMIN_EMAIL = "admin@example.com"
USER_EMAIL = "alice@example.com"
OTHER_EMAIL = "bob@example.com"


class FakePaymentProvider:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def create_payment_intent(self, amount, currency):
        self.calls.append((amount, currency))
        if self.fail:
            raise UpstreamPaymentError("card declined")
        return {"clientSecret": f"pi_{amount}_secret"}


def auth_headers(email, secret=SECRET, ttl=3600):
    return {"Authorization": f"Bearer {issue_token({'email': email}, secret, ttl)}"}


@pytest.fixture()
def settings():
    return Settings(access_token_secret=SECRET, payment_currency="usd", settlement_delete_retries=1)


@pytest.fixture()
def store():
    return Store(mongomock.MongoClient(), "bistro_test")


@pytest.fixture()
def provider():
    return FakePaymentProvider()


@pytest.fixture()
def client(settings, store, provider):
    app = create_app(settings=settings, store=store, payment_provider=provider)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def users(store):
    store.db["users"].insert_many([
        {"email": ADMIN_EMAIL, "name": "Admin", "role": "admin"},
        {"email": USER_EMAIL, "name": "Alice", "role": "standard"},
        {"email": OTHER_EMAIL, "name": "Bob"},
    ])


@pytest.fixture()
def menu(store):
    """Two pizzas and a drink; returns their ids keyed by name."""
    items = {
        "margherita": {"_id": ObjectId(), "name": "Margherita", "category": "pizza", "price": 10.0},
        "pepperoni": {"_id": ObjectId(), "name": "Pepperoni", "category": "pizza", "price": 12.0},
        "lemonade": {"_id": ObjectId(), "name": "Lemonade", "category": "drinks", "price": 5.0},
    }
    store.db["menu"].insert_many(list(items.values()))
    return {name: doc["_id"] for name, doc in items.items()}


@pytest.fixture()
def admin_headers(users):
    return auth_headers(ADMIN_EMAIL)


@pytest.fixture()
def user_headers(users):
    return auth_headers(USER_EMAIL)
