import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import users
from main import app
from schemas import User


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["grocery_test"]
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="customer", username=None):
        counter["n"] += 1
        name = username or f"{role}{counter['n']}"
        doc = users.create_user(User(username=name, email=f"{name}@grocery.com", role=role))
        user = users.hydrate_user(doc)
        return user, users.issue_token(user)

    return _make


@pytest.fixture
def gql(client):
    def _gql(query, variables=None, token=None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        response = client.post("/graphql", json={"query": query, "variables": variables or {}}, headers=headers)
        assert response.status_code == 200, response.text
        body = response.json()
        assert not body.get("errors"), body["errors"]
        return body["data"]

    return _gql


@pytest.fixture
def shop(db, make_user):
    """A customer with an address, and a product with two variants."""
    import addresses
    import catalog
    from schemas import AddressIn, VariantIn

    customer, token = make_user("customer")
    top = catalog.create_category("Dairy & Breakfast")
    sub = catalog.create_subcategory("Milk", top["id"])
    product = catalog.create_product(
        name="Toned Milk",
        category_id=sub["id"],
        variants=[
            VariantIn(weight="500ml", price=27, mrp=27),
            VariantIn(weight="1L", price=54, mrp=56),
        ],
    )
    address = addresses.create_address(
        AddressIn(user_id=customer["id"], street_address="12 MG Road", city="Pune", state="MH", postal_code="411001")
    )
    return {
        "customer": customer,
        "token": token,
        "cart_id": customer["cart"]["id"],
        "category": top,
        "subcategory": sub,
        "product": product,
        "variants": product["variants"],
        "address": address,
    }
