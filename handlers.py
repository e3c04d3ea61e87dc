import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import structlog
from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Identity, hash_password, issue_token, verify_password
from config import LOW_STOCK_THRESHOLD
from database import create_document, get_documents
from dispatcher import ADMIN, OPTIONAL, USER, action
from errors import AlreadyExists, EmptyCart, InvalidCredentials, NotFound, ValidationError
from schemas import Order as OrderSchema
from schemas import OrderItem, OrderStatus
from schemas import Product as ProductSchema
from schemas import Review as ReviewSchema
from schemas import User as UserSchema

logger = structlog.get_logger(__name__)

P = TypeVar("P", bound=BaseModel)

PRODUCT_SORTS = {
    "price-low": ("price", 1),
    "price-high": ("price", -1),
    "rating": ("rating", -1),
    "popular": ("reviews", -1),
}

NULLABLE_PRODUCT_FIELDS = {"image"}


# Utilities

def camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_camel(k): camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [camelize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    # Never send password hash
    doc.pop("password_hash", None)
    return camelize(doc)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "email": user.get("email"),
        "name": user.get("name"),
        "role": user.get("role", "user"),
    }


def to_obj_id(id_str: Any, what: str) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    if not isinstance(id_str, str) or not ObjectId.is_valid(id_str):
        raise ValidationError(f"Invalid {what} id")
    return ObjectId(id_str)


def parse(model: Type[P], data: Any) -> P:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"{field}: {first['msg']}" if field else first["msg"])


def find_product(db: Database, product_id: Any) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": to_obj_id(product_id, "product")})
    if not product:
        raise NotFound("Product not found")
    return product


def products_by_id(db: Database, product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    obj_ids = [ObjectId(pid) for pid in product_ids if ObjectId.is_valid(pid)]
    if not obj_ids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": obj_ids}})}


def with_products(db: Database, entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    products = products_by_id(db, [e["product_id"] for e in entries])
    return [{**serialize_doc(e), "product": serialize_doc(products.get(e["product_id"]))} for e in entries]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# Payload models

class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterInput(Payload):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginInput(Payload):
    email: str
    password: str


class ProductFilters(Payload):
    category: Optional[str] = None
    search: Optional[str] = None
    sort: Optional[str] = None


class ProductRef(Payload):
    id: str


class ProductIn(Payload):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    image: Optional[str] = None
    description: str = ""
    stock: int = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)
    reviews: int = Field(0, ge=0)


class ProductUpdate(Payload):
    id: str
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = None
    description: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    reviews: Optional[int] = Field(None, ge=0)


class AddToCartInput(Payload):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartItemInput(Payload):
    cart_item_id: str
    quantity: int = Field(..., ge=0)


class CartItemRef(Payload):
    cart_item_id: str


class ShippingAddress(Payload):
    full_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None

    def as_text(self) -> str:
        city_line = " ".join(p.strip() for p in (self.city, self.zip_code) if p and p.strip())
        parts = [self.full_name, self.address, city_line, self.country]
        return ", ".join(p.strip() for p in parts if p and p.strip())


class CreateOrderInput(Payload):
    shipping_address: Union[str, ShippingAddress]
    payment_method: str = Field("credit-card", min_length=1)
    checkout_id: Optional[str] = Field(None, min_length=1, max_length=64)

    def address_text(self) -> str:
        if isinstance(self.shipping_address, ShippingAddress):
            return self.shipping_address.as_text()
        return self.shipping_address.strip()


class OrderRef(Payload):
    order_id: str


class OrderStatusInput(Payload):
    order_id: str
    status: OrderStatus


class ReviewInput(Payload):
    product_id: str
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class ProductIdInput(Payload):
    product_id: str


# Auth

@action("register")
def register(data: Dict[str, Any], identity: Optional[Identity], db: Database) -> Dict[str, Any]:
    payload = parse(RegisterInput, data)
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise AlreadyExists()
    user = UserSchema(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        role="user",
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise AlreadyExists()
    logger.info("user_registered", user_id=user_id)
    token = issue_token(user_id, email, user.role)
    return {"token": token, "user": {"id": user_id, "email": email, "name": user.name, "role": user.role}}


@action("login")
def login(data: Dict[str, Any], identity: Optional[Identity], db: Database) -> Dict[str, Any]:
    payload = parse(LoginInput, data)
    user = db["user"].find_one({"email": payload.email.strip().lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.info("login_failed")
        raise InvalidCredentials()
    role = user.get("role", "user")
    token = issue_token(str(user["_id"]), user["email"], role)
    logger.info("login_succeeded", user_id=str(user["_id"]), role=role)
    return {"token": token, "user": public_user(user)}


@action("getUserProfile", access=USER)
def get_user_profile(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": to_obj_id(identity.id, "user")})
    if not user:
        raise NotFound("User not found")
    return {"profile": {**public_user(user), "createdAt": user.get("created_at")}}


# Products

@action("getProducts")
def get_products(data: Dict[str, Any], identity: Optional[Identity], db: Database) -> Dict[str, Any]:
    filters = parse(ProductFilters, data)
    query: Dict[str, Any] = {}
    if filters.category and filters.category != "All":
        query["category"] = filters.category
    if filters.search:
        pattern = {"$regex": re.escape(filters.search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}]
    cursor = db["product"].find(query)
    sort = PRODUCT_SORTS.get(filters.sort or "")
    if sort:
        cursor = cursor.sort(*sort)
    return {"products": [serialize_doc(p) for p in cursor]}


@action("getProduct")
def get_product(data: Dict[str, Any], identity: Optional[Identity], db: Database) -> Dict[str, Any]:
    ref = parse(ProductRef, data)
    return {"product": serialize_doc(find_product(db, ref.id))}


@action("getCategories")
def get_categories(data: Dict[str, Any], identity: Optional[Identity], db: Database) -> Dict[str, Any]:
    categories: List[str] = ["All"]
    for doc in db["product"].find({}, {"category": 1}):
        category = doc.get("category")
        if category and category not in categories:
            categories.append(category)
    return {"categories": categories}


# Cart

@action("addToCart", access=USER)
def add_to_cart(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    payload = parse(AddToCartInput, data)
    product = find_product(db, payload.product_id)
    key = {"user_id": identity.id, "product_id": str(product["_id"])}
    # upsert against the unique (user_id, product_id) index keeps one row per product
    db["cartitem"].update_one(
        key,
        {"$inc": {"quantity": payload.quantity}, "$setOnInsert": {"added_at": now_utc()}},
        upsert=True,
    )
    entry = db["cartitem"].find_one(key)
    return {"message": "Added to cart", "cartItem": serialize_doc(entry)}


@action("getCart", access=USER)
def get_cart(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    entries = list(db["cartitem"].find({"user_id": identity.id}))
    return {"cart": with_products(db, entries)}


def owned_cart_item(db: Database, identity: Identity, cart_item_id: str) -> Dict[str, Any]:
    entry = db["cartitem"].find_one({"_id": to_obj_id(cart_item_id, "cart item"), "user_id": identity.id})
    if not entry:
        raise NotFound("Cart item not found")
    return entry


@action("updateCartItem", access=USER)
def update_cart_item(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    payload = parse(UpdateCartItemInput, data)
    entry = owned_cart_item(db, identity, payload.cart_item_id)
    if payload.quantity == 0:
        db["cartitem"].delete_one({"_id": entry["_id"]})
        return {"message": "Item removed from cart"}
    db["cartitem"].update_one({"_id": entry["_id"]}, {"$set": {"quantity": payload.quantity}})
    return {"message": "Cart updated"}


@action("removeFromCart", access=USER)
def remove_from_cart(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    ref = parse(CartItemRef, data)
    entry = owned_cart_item(db, identity, ref.cart_item_id)
    db["cartitem"].delete_one({"_id": entry["_id"]})
    return {"message": "Item removed from cart"}


# Orders

@action("createOrder", access=USER)
def create_order(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    """Turn the caller's cart into an order.

    The checkout id makes the call safe to repeat: entries are first claimed
    with it, the order is inserted under a unique checkout id, and only then
    are the claimed entries deleted. Repeating the call with the same id after
    a failure finishes the cleanup and returns the order that already exists.
    """
    payload = parse(CreateOrderInput, data)
    shipping_address = payload.address_text()
    if not shipping_address:
        raise ValidationError("shippingAddress: Shipping address is required")
    checkout_id = payload.checkout_id or str(ObjectId())
    owner = {"user_id": identity.id, "checkout_id": checkout_id}

    existing = db["order"].find_one(owner)
    if existing:
        db["cartitem"].delete_many(owner)
        return {"order": serialize_doc(existing)}

    # entries still held by a checkout whose order exists were already billed
    held = db["cartitem"].distinct("checkout_id", {"user_id": identity.id, "checkout_id": {"$ne": None}})
    if held:
        finished = db["order"].distinct("checkout_id", {"user_id": identity.id, "checkout_id": {"$in": held}})
        if finished:
            db["cartitem"].delete_many({"user_id": identity.id, "checkout_id": {"$in": finished}})

    db["cartitem"].update_many({"user_id": identity.id}, {"$set": {"checkout_id": checkout_id}})
    entries = list(db["cartitem"].find(owner))
    if not entries:
        raise EmptyCart()

    products = products_by_id(db, [e["product_id"] for e in entries])
    items: List[OrderItem] = []
    for entry in entries:
        product = products.get(entry["product_id"])
        if product is None:
            raise ValidationError(f"Product {entry['product_id']} is no longer available")
        items.append(OrderItem(
            product_id=entry["product_id"],
            name=product["name"],
            price=float(product["price"]),
            quantity=int(entry["quantity"]),
            image=product.get("image"),
        ))
    total = round(sum(item.price * item.quantity for item in items), 2)

    order = OrderSchema(
        user_id=identity.id,
        checkout_id=checkout_id,
        items=items,
        total=total,
        shipping_address=shipping_address,
        payment_method=payload.payment_method,
        status="Processing",
    )
    try:
        order_id = create_document(db, "order", order)
        stored = db["order"].find_one({"_id": ObjectId(order_id)})
    except DuplicateKeyError:
        stored = db["order"].find_one(owner)
        if stored is None:
            raise ValidationError("checkoutId: Checkout id already used")

    db["cartitem"].delete_many(owner)
    logger.info("order_created", order_id=str(stored["_id"]), user_id=identity.id, total=stored["total"], items=len(items))
    return {"order": serialize_doc(stored)}


@action("getOrders", access=USER)
def get_orders(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    return {"orders": [serialize_doc(o) for o in get_documents(db, "order", {"user_id": identity.id})]}


@action("getOrder", access=USER)
def get_order(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    ref = parse(OrderRef, data)
    order = db["order"].find_one({"_id": to_obj_id(ref.order_id, "order"), "user_id": identity.id})
    if not order:
        raise NotFound("Order not found")
    return {"order": serialize_doc(order)}


# Reviews

@action("addReview", access=OPTIONAL)
def add_review(data: Dict[str, Any], identity: Optional[Identity], db: Database) -> Dict[str, Any]:
    payload = parse(ReviewInput, data)
    product = find_product(db, payload.product_id)
    review = ReviewSchema(
        product_id=str(product["_id"]),
        user_id=identity.id if identity else None,
        rating=payload.rating,
        comment=payload.comment,
    )
    review_id = create_document(db, "review", review)
    fold_review(db, product, payload.rating)
    return {"message": "Review added", "reviewId": review_id}


def fold_review(db: Database, product: Dict[str, Any], rating: Optional[int]) -> None:
    """Count one more review and fold its rating into the product average.

    The write only applies while the product still holds the counter and rating
    it was computed from; otherwise the product is re-read and the average
    recomputed.
    """
    while True:
        guard = {"_id": product["_id"], "reviews": product.get("reviews"), "rating": product.get("rating")}
        update: Dict[str, Any] = {"$inc": {"reviews": 1}}
        if rating is not None:
            count = int(product.get("reviews") or 0)
            current = float(product.get("rating") or 0)
            update["$set"] = {"rating": round((current * count + rating) / (count + 1), 2)}
        if db["product"].update_one(guard, update).matched_count:
            return
        product = find_product(db, product["_id"])


@action("getReviews")
def get_reviews(data: Dict[str, Any], identity: Optional[Identity], db: Database) -> Dict[str, Any]:
    payload = parse(ProductIdInput, data)
    product = find_product(db, payload.product_id)
    cursor = db["review"].find({"product_id": str(product["_id"])}).sort("created_at", -1)
    return {"reviews": [serialize_doc(r) for r in cursor]}


# Wishlist

@action("addToWishlist", access=USER)
def add_to_wishlist(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    payload = parse(ProductIdInput, data)
    product = find_product(db, payload.product_id)
    db["wishlist"].update_one(
        {"user_id": identity.id, "product_id": str(product["_id"])},
        {"$setOnInsert": {"added_at": now_utc()}},
        upsert=True,
    )
    return {"message": "Added to wishlist"}


@action("removeFromWishlist", access=USER)
def remove_from_wishlist(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    payload = parse(ProductIdInput, data)
    db["wishlist"].delete_many({"user_id": identity.id, "product_id": payload.product_id})
    return {"message": "Removed from wishlist"}


@action("getWishlist", access=USER)
def get_wishlist(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    entries = list(db["wishlist"].find({"user_id": identity.id}))
    return {"wishlist": with_products(db, entries)}


# Admin

@action("getDashboardStats", access=ADMIN)
def get_dashboard_stats(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    revenue = list(db["order"].aggregate([{"$group": {"_id": None, "total": {"$sum": "$total"}}}]))
    recent_orders = db["order"].find().sort("created_at", -1).limit(5)

    sales: Dict[str, Dict[str, Any]] = {}
    for order in db["order"].find({}, {"items": 1}):
        for item in order.get("items", []):
            entry = sales.get(item["product_id"])
            if entry is None:
                entry = {k: v for k, v in item.items() if k != "quantity"}
                entry["total_sold"] = 0
                sales[item["product_id"]] = entry
            entry["total_sold"] += int(item.get("quantity", 0))
    top_products = sorted(sales.values(), key=lambda s: s["total_sold"], reverse=True)[:5]

    stats = {
        "total_revenue": round(revenue[0]["total"], 2) if revenue else 0,
        "total_orders": db["order"].count_documents({}),
        "total_users": db["user"].count_documents({}),
        "total_products": db["product"].count_documents({}),
        "low_stock_products": db["product"].count_documents({"stock": {"$lt": LOW_STOCK_THRESHOLD}}),
        "recent_orders": [serialize_doc(o) for o in recent_orders],
        "top_products": top_products,
    }
    return {"stats": camelize(stats)}


@action("getAllUsers", access=ADMIN)
def get_all_users(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    users = [{**public_user(u), "createdAt": u.get("created_at")} for u in get_documents(db, "user")]
    return {"users": users}


@action("getAllOrders", access=ADMIN)
def get_all_orders(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    return {"orders": [serialize_doc(o) for o in get_documents(db, "order")]}


@action("updateOrderStatus", access=ADMIN)
def update_order_status(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    payload = parse(OrderStatusInput, data)
    obj_id = to_obj_id(payload.order_id, "order")
    res = db["order"].update_one({"_id": obj_id}, {"$set": {"status": payload.status, "updated_at": now_utc()}})
    if res.matched_count == 0:
        raise NotFound("Order not found")
    logger.info("order_status_updated", order_id=payload.order_id, status=payload.status, admin_id=identity.id)
    return {"message": "Order status updated", "order": serialize_doc(db["order"].find_one({"_id": obj_id}))}


@action("addProduct", access=ADMIN)
def add_product(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    payload = parse(ProductIn, data)
    product = ProductSchema(**payload.model_dump())
    product_id = create_document(db, "product", product)
    logger.info("product_added", product_id=product_id, admin_id=identity.id)
    return {"product": serialize_doc(db["product"].find_one({"_id": ObjectId(product_id)}))}


@action("updateProduct", access=ADMIN)
def update_product(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    payload = parse(ProductUpdate, data)
    obj_id = to_obj_id(payload.id, "product")
    fields = payload.model_dump(exclude_unset=True, exclude={"id"})
    update_dict = {k: v for k, v in fields.items() if v is not None or k in NULLABLE_PRODUCT_FIELDS}
    if not update_dict:
        raise ValidationError("No fields to update")
    update_dict["updated_at"] = now_utc()
    res = db["product"].update_one({"_id": obj_id}, {"$set": update_dict})
    if res.matched_count == 0:
        raise NotFound("Product not found")
    logger.info("product_updated", product_id=payload.id, fields=sorted(update_dict), admin_id=identity.id)
    return {"message": "Product updated", "product": serialize_doc(db["product"].find_one({"_id": obj_id}))}


@action("deleteProduct", access=ADMIN)
def delete_product(data: Dict[str, Any], identity: Identity, db: Database) -> Dict[str, Any]:
    ref = parse(ProductRef, data)
    obj_id = to_obj_id(ref.id, "product")
    res = db["product"].delete_one({"_id": obj_id})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    # order line items are snapshots and stay as they are
    db["cartitem"].delete_many({"product_id": str(obj_id)})
    db["wishlist"].delete_many({"product_id": str(obj_id)})
    logger.info("product_deleted", product_id=str(obj_id), admin_id=identity.id)
    return {"message": "Product deleted"}
