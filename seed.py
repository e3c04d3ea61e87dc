"""Seed data: the administrator account and the demo catalog."""

import structlog
from pymongo.database import Database

from auth import hash_password
from database import create_document
from schemas import Product, User

logger = structlog.get_logger(__name__)

SAMPLE_PRODUCTS = [
    ("Premium Wireless Headphones", 299.99, "Electronics", "photo-1505740420928-5e560c06d30e",
     "High-quality wireless headphones with noise cancellation", 50, 4.5, 128),
    ("Smart Watch Pro", 399.99, "Electronics", "photo-1523275335684-37898b6baf30",
     "Advanced smartwatch with health tracking features", 30, 4.7, 256),
    ("Designer Backpack", 89.99, "Fashion", "photo-1553062407-98eeb64c6a62",
     "Stylish and durable backpack for everyday use", 100, 4.3, 89),
    ("Running Shoes Elite", 149.99, "Sports", "photo-1542291026-7eec264c27ff",
     "Professional running shoes with advanced cushioning", 75, 4.6, 342),
    ("Laptop Stand Aluminum", 59.99, "Accessories", "photo-1527864550417-7fd91fc51a46",
     "Ergonomic laptop stand made from premium aluminum", 120, 4.4, 67),
    ("Mechanical Keyboard RGB", 179.99, "Electronics", "photo-1587829741301-dc798b83add3",
     "Gaming mechanical keyboard with customizable RGB lighting", 45, 4.8, 423),
    ("Yoga Mat Premium", 49.99, "Sports", "photo-1601925260368-ae2f83cf8b7f",
     "Extra thick yoga mat with non-slip surface", 200, 4.5, 156),
    ("Coffee Maker Deluxe", 129.99, "Home", "photo-1517668808822-9ebb02f2a0e6",
     "Programmable coffee maker with thermal carafe", 60, 4.2, 234),
    ("Sunglasses Aviator", 159.99, "Fashion", "photo-1572635196237-14b3f281503f",
     "Classic aviator sunglasses with UV protection", 85, 4.6, 178),
    ("Portable Charger 20000mAh", 39.99, "Electronics", "photo-1609091839311-d5365f9ff1c5",
     "High-capacity portable charger with fast charging", 150, 4.7, 512),
    ("Desk Lamp LED", 69.99, "Home", "photo-1507473885765-e6ed057f782c",
     "Adjustable LED desk lamp with touch controls", 90, 4.4, 145),
    ("Water Bottle Insulated", 34.99, "Sports", "photo-1602143407151-7111542de6e8",
     "Stainless steel insulated water bottle keeps drinks cold for 24h", 180, 4.8, 289),
]


def seed_admin(db: Database, email: str, password: str, name: str = "Admin") -> bool:
    """Create the admin user unless one with that email already exists."""
    email = email.lower()
    if db["user"].find_one({"email": email}):
        return False
    admin = User(name=name, email=email, password_hash=hash_password(password), role="admin")
    admin_id = create_document(db, "user", admin)
    logger.info("admin_seeded", user_id=admin_id, email=email)
    return True


def seed_products(db: Database) -> int:
    if db["product"].count_documents({}) > 0:
        return 0
    for name, price, category, photo, description, stock, rating, reviews in SAMPLE_PRODUCTS:
        product = Product(
            name=name,
            price=price,
            category=category,
            image=f"https://images.unsplash.com/{photo}?w=500",
            description=description,
            stock=stock,
            rating=rating,
            reviews=reviews,
        )
        create_document(db, "product", product)
    logger.info("catalog_seeded", products=len(SAMPLE_PRODUCTS))
    return len(SAMPLE_PRODUCTS)
