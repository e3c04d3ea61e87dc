import pytest

from dispatcher import ACTIONS, PUBLIC, Action, action, run_action


def test_unknown_action(api):
    response = api("launchRocket", {})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid action"}


def test_malformed_body(client):
    response = client.post("/api", json={"data": {}})
    assert response.status_code == 400
    assert response.json() == {"error": "action: Field required"}


def test_null_data_is_treated_as_empty(client, two_products):
    response = client.post("/api", json={"action": "getProducts", "data": None})
    assert response.status_code == 200
    assert len(response.json()["products"]) == 2


def test_unexpected_fault_becomes_internal_error(api, monkeypatch):
    def explode(data, identity, db):
        raise RuntimeError("disk on fire")

    monkeypatch.setitem(ACTIONS, "explode", Action(name="explode", handler=explode, access=PUBLIC))
    response = api("explode")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_run_action_returns_status_and_body(db):
    status, body = run_action("getCategories", None, None, db)
    assert status == 200
    assert body == {"success": True, "categories": ["All"]}

    status, body = run_action("getCart", {}, None, db)
    assert status == 401
    assert body == {"error": "Authentication required"}


def test_action_names_are_unique():
    with pytest.raises(ValueError):
        action("login")(lambda data, identity, db: {})


def test_every_documented_action_is_registered():
    expected = {
        "register", "login", "getUserProfile",
        "getProducts", "getProduct", "getCategories",
        "addToCart", "getCart", "updateCartItem", "removeFromCart",
        "createOrder", "getOrders", "getOrder",
        "addReview", "getReviews",
        "addToWishlist", "removeFromWishlist", "getWishlist",
        "getDashboardStats", "getAllUsers", "getAllOrders", "updateOrderStatus",
        "addProduct", "updateProduct", "deleteProduct",
    }
    assert expected <= set(ACTIONS)


def test_health_and_root(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "OK"
    assert client.get("/").status_code == 200
