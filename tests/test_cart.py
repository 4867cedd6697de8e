import asyncio

import mongomock
import pytest
from pymongo.errors import DuplicateKeyError

import carts
import database
from errors import ConflictError, NotFoundError, ValidationError

ADD_TO_CART = """
mutation ($cartId: ID!, $variantId: ID!, $quantity: Int!) {
  addToCart(cartId: $cartId, productVariantId: $variantId, quantity: $quantity) {
    error
    cartItem { id quantity productVariant { id weight price product { name } } }
  }
}
"""


def test_adding_same_variant_accumulates(shop, db):
    small = shop["variants"][0]
    carts.add_to_cart(shop["cart_id"], small["id"], 2)
    item = carts.add_to_cart(shop["cart_id"], small["id"], 3)

    assert item["quantity"] == 5
    assert db["cartitem"].count_documents({"cart_id": shop["cart_id"]}) == 1
    assert item["product_variant"]["weight"] == "500ml"
    assert item["product_variant"]["product"]["name"] == "Toned Milk"


def test_different_variants_get_separate_rows(shop):
    small, large = shop["variants"]
    carts.add_to_cart(shop["cart_id"], small["id"], 1)
    carts.add_to_cart(shop["cart_id"], large["id"], 1)
    cart = carts.get_cart(shop["cart_id"])
    assert {i["product_variant"]["id"] for i in cart["cart_items"]} == {small["id"], large["id"]}


def test_add_to_unknown_cart(shop):
    with pytest.raises(NotFoundError, match="Cart not exist"):
        carts.add_to_cart("64b000000000000000000000", shop["variants"][0]["id"], 1)


def test_add_unknown_variant(shop):
    with pytest.raises(NotFoundError, match="variant not found"):
        carts.add_to_cart(shop["cart_id"], "missing", 1)


@pytest.mark.parametrize("quantity", [0, -2])
def test_add_non_positive_quantity(shop, db, quantity):
    with pytest.raises(ValidationError, match="quantity must be greater than 0"):
        carts.add_to_cart(shop["cart_id"], shop["variants"][0]["id"], quantity)
    assert db["cartitem"].count_documents({}) == 0


def test_update_quantity_applies_delta(shop):
    item = carts.add_to_cart(shop["cart_id"], shop["variants"][0]["id"], 3)
    assert carts.update_quantity(item["id"], 2) == ("Cart quantity updated successfully", 5)
    assert carts.update_quantity(item["id"], -1) == ("Cart quantity updated successfully", 4)


def test_update_quantity_to_zero_removes_item(shop):
    item = carts.add_to_cart(shop["cart_id"], shop["variants"][0]["id"], 3)
    assert carts.update_quantity(item["id"], -3) == ("Cart item removed successfully", 0)
    assert carts.get_cart(shop["cart_id"])["cart_items"] == []
    with pytest.raises(NotFoundError):
        carts.delete_cart_item(item["id"])


def test_update_quantity_below_zero_is_rejected(shop, db):
    item = carts.add_to_cart(shop["cart_id"], shop["variants"][0]["id"], 2)
    with pytest.raises(ValidationError, match="below zero"):
        carts.update_quantity(item["id"], -5)
    assert db["cartitem"].find_one({})["quantity"] == 2


def test_update_quantity_of_missing_item(db):
    with pytest.raises(NotFoundError):
        carts.update_quantity("64b000000000000000000000", 1)


def test_clear_cart_reports_count(shop):
    small, large = shop["variants"]
    carts.add_to_cart(shop["cart_id"], small["id"], 1)
    carts.add_to_cart(shop["cart_id"], large["id"], 4)
    assert carts.clear_cart_items(shop["cart_id"]) == 2
    assert carts.clear_cart_items(shop["cart_id"]) == 0


def test_add_to_cart_over_graphql(gql, shop):
    variables = {"cartId": shop["cart_id"], "variantId": shop["variants"][1]["id"], "quantity": 2}
    data = gql(ADD_TO_CART, variables)["addToCart"]
    assert data["error"] is None
    assert data["cartItem"]["quantity"] == 2
    assert data["cartItem"]["productVariant"]["product"]["name"] == "Toned Milk"

    cart = gql(
        """
        query ($id: ID!) {
          cart(cartId: $id) { error cart { id userId cartItems { quantity productVariant { weight } } } }
        }
        """,
        {"id": shop["cart_id"]},
    )["cart"]
    assert cart["cart"]["userId"] == shop["customer"]["id"]
    assert cart["cart"]["cartItems"] == [{"quantity": 2, "productVariant": {"weight": "1L"}}]


def test_cart_errors_over_graphql(gql, shop):
    variables = {"cartId": shop["cart_id"], "variantId": shop["variants"][0]["id"], "quantity": 0}
    assert gql(ADD_TO_CART, variables)["addToCart"] == {
        "error": "quantity must be greater than 0",
        "cartItem": None,
    }
    data = gql('{ cart(cartId: "nope") { error cart { id } } }')["cart"]
    assert data == {"error": "Cart not exist", "cart": None}


def test_update_quantity_and_delete_over_graphql(gql, shop):
    item = carts.add_to_cart(shop["cart_id"], shop["variants"][0]["id"], 1)
    update = """
    mutation ($id: ID!, $q: Int!) {
      updateQuantity(cartItemId: $id, quantity: $q) { message updatedQuantity error }
    }
    """
    assert gql(update, {"id": item["id"], "q": 4})["updateQuantity"] == {
        "message": "Cart quantity updated successfully",
        "updatedQuantity": 5,
        "error": None,
    }
    data = gql(update, {"id": item["id"], "q": -9})["updateQuantity"]
    assert data["updatedQuantity"] is None
    assert "below zero" in data["error"]

    delete = "mutation ($id: ID!) { deleteCartItem(cartItemId: $id) { success error } }"
    assert gql(delete, {"id": item["id"]})["deleteCartItem"] == {"success": True, "error": None}
    assert gql(delete, {"id": item["id"]})["deleteCartItem"] == {"success": False, "error": "Cart item not found."}


def test_lost_insert_race_accumulates_onto_existing_row(shop, db, monkeypatch):
    variant = shop["variants"][0]
    real_find_one_and_update = mongomock.Collection.find_one_and_update
    calls = []

    def racing(self, filter, update, *args, **kwargs):
        calls.append(kwargs.get("upsert", False))
        if len(calls) == 1:
            # another request inserts the row between our lookup and our insert
            db["cartitem"].insert_one(
                {"cart_id": shop["cart_id"], "variant_id": variant["id"], "product_id": shop["product"]["id"], "quantity": 2}
            )
            raise DuplicateKeyError("E11000 duplicate key error")
        return real_find_one_and_update(self, filter, update, *args, **kwargs)

    monkeypatch.setattr(mongomock.Collection, "find_one_and_update", racing)
    item = carts.add_to_cart(shop["cart_id"], variant["id"], 3)

    assert calls == [True, False]
    assert item["quantity"] == 5
    assert db["cartitem"].count_documents({"cart_id": shop["cart_id"]}) == 1


def test_cart_item_index_rejects_duplicate_rows(shop, db):
    database.ensure_indexes()
    variant = shop["variants"][0]
    carts.add_to_cart(shop["cart_id"], variant["id"], 1)
    with pytest.raises(mongomock.DuplicateKeyError):
        db["cartitem"].insert_one(
            {"cart_id": shop["cart_id"], "variant_id": variant["id"], "product_id": shop["product"]["id"], "quantity": 1}
        )
    assert db["cartitem"].count_documents({}) == 1


def test_update_quantity_gives_up_under_constant_contention(shop, db, monkeypatch):
    item = carts.add_to_cart(shop["cart_id"], shop["variants"][0]["id"], 2)
    real_find_one = mongomock.Collection.find_one
    reads = []

    def moving_target(self, *args, **kwargs):
        doc = real_find_one(self, *args, **kwargs)
        if self.name == "cartitem" and doc:
            # every read sees a quantity some other request already changed
            reads.append(doc["quantity"])
            doc["quantity"] += len(reads)
        return doc

    with monkeypatch.context() as m:
        m.setattr(mongomock.Collection, "find_one", moving_target)
        with pytest.raises(ConflictError):
            carts.update_quantity(item["id"], 1)

    assert len(reads) == carts.MAX_CAS_ATTEMPTS
    assert db["cartitem"].find_one({})["quantity"] == 2


def test_cart_resolvers_run_off_the_event_loop(gql, shop, monkeypatch):
    seen = []
    real_add_to_cart = carts.add_to_cart

    def spy(*args):
        try:
            asyncio.get_running_loop()
            seen.append("on-event-loop")
        except RuntimeError:
            seen.append("worker-thread")
        return real_add_to_cart(*args)

    monkeypatch.setattr(carts, "add_to_cart", spy)
    variables = {"cartId": shop["cart_id"], "variantId": shop["variants"][0]["id"], "quantity": 1}
    assert gql(ADD_TO_CART, variables)["addToCart"]["error"] is None
    assert seen == ["worker-thread"]
