import uuid

import pytest

from app import create_app
from backend import BackendError, Category, Product, User, product_payload


class FakeBackend:
    """In-memory stand-in for the Supabase project."""

    def __init__(self):
        self.products = {}
        self.categories = {}
        self.users = {}
        self.admins = set()
        self.fail_with = None
        self.signed_out = []

    def _check(self):
        if self.fail_with:
            raise BackendError(self.fail_with)

    def for_token(self, access_token):
        return self

    # products
    def add_product(self, **fields):
        pid = fields.pop("id", None) or uuid.uuid4().hex[:8]
        self.products[pid] = Product(id=pid, **fields)
        return self.products[pid]

    def fetch_products(self):
        self._check()
        return sorted(self.products.values(), key=lambda p: p.name)

    def create_product(self, fields):
        self._check()
        pid = uuid.uuid4().hex[:8]
        self.products[pid] = Product.from_row({"id": pid, **product_payload(fields)})
        return self.products[pid]

    def update_product(self, product_id, fields):
        self._check()
        if product_id not in self.products:
            raise BackendError("Product not found")
        self.products[product_id] = Product.from_row({"id": product_id, **product_payload(fields)})
        return self.products[product_id]

    def delete_product(self, product_id):
        self._check()
        self.products.pop(product_id, None)

    def insert_products(self, rows):
        rows = list(rows)
        for row in rows:
            self.create_product(row)
        return len(rows)

    # categories
    def add_category(self, name, sort_order=0):
        cid = uuid.uuid4().hex[:8]
        self.categories[cid] = Category(id=cid, name=name, sort_order=sort_order)
        return self.categories[cid]

    def fetch_categories(self):
        self._check()
        return sorted(self.categories.values(), key=lambda c: c.sort_order)

    def create_category(self, name):
        self._check()
        return self.add_category(name, sort_order=999)

    def update_category(self, category_id, name):
        self._check()
        old = self.categories[category_id]
        self.categories[category_id] = Category(id=old.id, name=name, sort_order=old.sort_order)

    def delete_category(self, category_id):
        self._check()
        self.categories.pop(category_id, None)

    # auth
    def add_user(self, email, password, admin=False):
        uid = uuid.uuid4().hex[:8]
        self.users[email] = (User(id=uid, email=email), password)
        if admin:
            self.admins.add(uid)
        return uid

    def sign_in(self, email, password):
        user, expected = self.users.get(email, (None, None))
        if not user or password != expected:
            raise BackendError("Invalid login credentials")
        return user, f"token-{user.id}"

    def sign_out(self):
        self.signed_out.append(True)

    def is_admin(self, user_id):
        self._check()
        return user_id in self.admins


@pytest.fixture
def fake_backend():
    be = FakeBackend()
    for i, name in enumerate(["Mayonnaise", "Cheese", "Spread"]):
        be.add_category(name, sort_order=i)
    be.add_product(id="1", name="Classic Mayonnaise", brand="Veeba", category="Mayonnaise", price=185, unit="1 Kg")
    be.add_product(id="2", name="Mozzarella Cheese Block", brand="Lactilas", category="Cheese", price=380, unit="1 Kg")
    be.add_product(id="3", name="Peanut Butter Creamy", brand="Wizzie", category="Spread", price=280, unit="1 Kg",
                   mrp=320.0)
    return be


@pytest.fixture
def app(fake_backend, tmp_path):
    flask_app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "LISTING_DIR": str(tmp_path),
            "WHATSAPP_NUMBER": "+91 99298 73530",
            "STORE_NAME": "Test Mart",
            "DELIVERY_LOCATION": "Jaipur",
        },
        backend=fake_backend,
    )
    return flask_app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


def _sign_in(client, email, is_admin):
    with client.session_transaction() as sess:
        sess["user"] = {"id": "u-1", "email": email}
        sess["access_token"] = "token-u-1"
        sess["is_admin"] = is_admin


@pytest.fixture
def customer(client):
    _sign_in(client, "asha@example.com", False)
    return client


@pytest.fixture
def admin(client):
    _sign_in(client, "owner@example.com", True)
    return client
