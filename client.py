"""
Client for the storefront action endpoint.

Every call goes through ``StorefrontClient.call``, which posts
``{action, data}`` to ``/api`` with the stored bearer token. Business errors
and transport failures both come back as ``ServiceError`` so callers handle
them the same way. Nothing is retried automatically.
"""

import json
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests

NETWORK_ERROR = "Network error or server unreachable"
DEFAULT_SESSION_PATH = Path(os.getenv("STOREFRONT_SESSION", Path.home() / ".storefront" / "session.json"))


class ServiceError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        # set by OrderService.create; pass it back to resubmit the same checkout
        self.checkout_id: Optional[str] = None

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None


class TokenStore:
    """Session token and last-known user, persisted as JSON.

    The token is never checked for expiry here; an expired token shows up as
    a failed call.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_SESSION_PATH):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        try:
            return json.loads(self.path.read_text())
        except (OSError, ValueError):
            return {}

    def save(self, token: str, user: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"token": token, "user": user}))

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    @property
    def token(self) -> Optional[str]:
        return self._read().get("token")

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self._read().get("user")


class StorefrontClient:
    def __init__(self, base_url: str = "http://localhost:8000", store: Optional[TokenStore] = None, session: Any = None):
        self.base_url = base_url.rstrip("/")
        self.store = store or TokenStore()
        self.session = session or requests.Session()
        self.auth = AuthService(self)
        self.products = ProductService(self)
        self.cart = CartService(self)
        self.orders = OrderService(self)
        self.wishlist = WishlistService(self)
        self.reviews = ReviewService(self)
        self.admin = AdminService(self)
        self.profile = ProfileService(self)

    def call(self, action: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        token = self.store.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self.session.post(f"{self.base_url}/api", json={"action": action, "data": data or {}}, headers=headers)
        except requests.RequestException:
            raise ServiceError(NETWORK_ERROR)
        try:
            body = response.json()
        except ValueError:
            raise ServiceError(NETWORK_ERROR, response.status_code if response.status_code >= 400 else None)
        if response.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            raise ServiceError(message or f"Request failed with status {response.status_code}", response.status_code)
        return body


class _Service:
    def __init__(self, client: StorefrontClient):
        self.client = client


class AuthService(_Service):
    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        result = self.client.call("register", {"name": name, "email": email, "password": password})
        self.client.store.save(result["token"], result["user"])
        return result

    def login(self, email: str, password: str) -> Dict[str, Any]:
        result = self.client.call("login", {"email": email, "password": password})
        self.client.store.save(result["token"], result["user"])
        return result

    def logout(self) -> None:
        self.client.store.clear()

    def current_user(self) -> Optional[Dict[str, Any]]:
        return self.client.store.user

    def is_authenticated(self) -> bool:
        return bool(self.client.store.token)

    def is_admin(self) -> bool:
        user = self.current_user()
        return bool(user) and user.get("role") == "admin"


class ProductService(_Service):
    def get_products(self, category: Optional[str] = None, search: Optional[str] = None, sort: Optional[str] = None) -> List[Dict[str, Any]]:
        filters = {k: v for k, v in (("category", category), ("search", search), ("sort", sort)) if v}
        return self.client.call("getProducts", filters)["products"]

    def get_product(self, product_id: str) -> Dict[str, Any]:
        return self.client.call("getProduct", {"id": product_id})["product"]

    def get_categories(self) -> List[str]:
        return self.client.call("getCategories")["categories"]


class CartService(_Service):
    def get_cart(self) -> List[Dict[str, Any]]:
        return self.client.call("getCart")["cart"]

    def add(self, product_id: str, quantity: int = 1) -> Dict[str, Any]:
        return self.client.call("addToCart", {"productId": product_id, "quantity": quantity})

    def update(self, cart_item_id: str, quantity: int) -> Dict[str, Any]:
        return self.client.call("updateCartItem", {"cartItemId": cart_item_id, "quantity": quantity})

    def remove(self, cart_item_id: str) -> Dict[str, Any]:
        return self.client.call("removeFromCart", {"cartItemId": cart_item_id})


class OrderService(_Service):
    def create(self, shipping_address: Union[str, Dict[str, Any]], payment_method: str = "credit-card", checkout_id: Optional[str] = None) -> Dict[str, Any]:
        checkout_id = checkout_id or str(uuid.uuid4())
        data = {"shippingAddress": shipping_address, "paymentMethod": payment_method, "checkoutId": checkout_id}
        try:
            return self.client.call("createOrder", data)["order"]
        except ServiceError as exc:
            exc.checkout_id = checkout_id
            raise

    def list(self) -> List[Dict[str, Any]]:
        return self.client.call("getOrders")["orders"]

    def get(self, order_id: str) -> Dict[str, Any]:
        return self.client.call("getOrder", {"orderId": order_id})["order"]


class WishlistService(_Service):
    def add(self, product_id: str) -> Dict[str, Any]:
        return self.client.call("addToWishlist", {"productId": product_id})

    def remove(self, product_id: str) -> Dict[str, Any]:
        return self.client.call("removeFromWishlist", {"productId": product_id})

    def list(self) -> List[Dict[str, Any]]:
        return self.client.call("getWishlist")["wishlist"]


class ReviewService(_Service):
    def add(self, product_id: str, rating: Optional[int] = None, comment: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {"productId": product_id}
        if rating is not None:
            data["rating"] = rating
        if comment:
            data["comment"] = comment
        return self.client.call("addReview", data)

    def list(self, product_id: str) -> List[Dict[str, Any]]:
        return self.client.call("getReviews", {"productId": product_id})["reviews"]


class AdminService(_Service):
    def dashboard_stats(self) -> Dict[str, Any]:
        return self.client.call("getDashboardStats")["stats"]

    def users(self) -> List[Dict[str, Any]]:
        return self.client.call("getAllUsers")["users"]

    def orders(self) -> List[Dict[str, Any]]:
        return self.client.call("getAllOrders")["orders"]

    def update_order_status(self, order_id: str, status: str) -> Dict[str, Any]:
        return self.client.call("updateOrderStatus", {"orderId": order_id, "status": status})["order"]

    def add_product(self, **fields: Any) -> Dict[str, Any]:
        return self.client.call("addProduct", fields)["product"]

    def update_product(self, product_id: str, **fields: Any) -> Dict[str, Any]:
        return self.client.call("updateProduct", {"id": product_id, **fields})["product"]

    def delete_product(self, product_id: str) -> Dict[str, Any]:
        return self.client.call("deleteProduct", {"id": product_id})


class ProfileService(_Service):
    def get(self) -> Dict[str, Any]:
        return self.client.call("getUserProfile")["profile"]
