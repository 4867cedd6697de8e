import database


def test_banner(client):
    assert client.get("/").json() == {"message": "Grocery application backend running"}


def test_database_report(client, db):
    db["product"].insert_one({"name": "x"})
    body = client.get("/test").json()
    assert body["database"] == "connected"
    assert "product" in body["collections"]
    assert body["indexes"]["cartitem:cart_id,variant_id"] is True
    assert all(body["indexes"].values())


def test_database_report_without_database(client, monkeypatch):
    monkeypatch.setattr(database, "db", None)
    assert client.get("/test").json() == {
        "backend": "running",
        "database": "not configured",
        "collections": [],
        "indexes": {},
    }


def test_seed_is_idempotent(client, db):
    first = client.post("/seed").json()
    assert first["seeded"] is True
    assert first["products"] == db["product"].count_documents({})
    assert db["user"].count_documents({"role": "admin"}) == 1
    assert db["category"].count_documents({"parent_category_id": None}) == 3

    second = client.post("/seed").json()
    assert second == {"seeded": False, "message": "Products already exist"}


def test_seeded_catalog_over_graphql(client, gql):
    client.post("/seed")
    categories = gql("{ categories { name subCategories { name } } }")["categories"]
    assert {c["name"] for c in categories} == {"Fruits & Vegetables", "Dairy & Breakfast", "Staples"}
    products = gql("{ products { name variants { weight inStock } } }")["products"]
    eggs = next(p for p in products if p["name"] == "Farm Eggs")
    assert eggs["variants"] == [{"weight": "6 pcs", "inStock": True}, {"weight": "12 pcs", "inStock": False}]
