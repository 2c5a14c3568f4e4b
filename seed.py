"""
Demo catalog and super-admin account

Run ``python seed.py`` against the configured database, or call
``POST /seed`` on a running API. Seeding is idempotent.
"""
import logging
import os
from datetime import datetime, timezone

from schemas import Brand, Category, Product, User
from security import hash_password
from utils import slugify

logger = logging.getLogger(__name__)

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@neurarig.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

DEMO_CATEGORIES = [
    {
        "name": "Processors",
        "specifications": [
            {"name": "Cores", "type": "number", "required": True},
            {"name": "Base Clock", "type": "number", "unit": "GHz"},
            {"name": "Socket", "type": "select", "options": ["AM4", "AM5", "LGA1700"], "required": True},
        ],
    },
    {
        "name": "Graphics Cards",
        "specifications": [
            {"name": "VRAM", "type": "number", "unit": "GB", "required": True},
            {"name": "Chipset", "type": "text"},
            {"name": "Ray Tracing", "type": "checkbox"},
        ],
    },
    {
        "name": "Memory",
        "specifications": [
            {"name": "Capacity", "type": "number", "unit": "GB", "required": True},
            {"name": "Type", "type": "select", "options": ["DDR4", "DDR5"]},
            {"name": "Speed", "type": "number", "unit": "MHz"},
        ],
    },
    {
        "name": "Storage",
        "specifications": [
            {"name": "Capacity", "type": "number", "unit": "GB", "required": True},
            {"name": "Interface", "type": "select", "options": ["NVMe", "SATA"]},
        ],
    },
    {
        "name": "Laptops",
        "specifications": [
            {"name": "Processor", "type": "text", "required": True},
            {"name": "Display", "type": "number", "unit": "in"},
        ],
    },
]

DEMO_BRANDS = ["AMD", "Intel", "NVIDIA", "ASUS", "Corsair", "Samsung", "NeuraRig"]

DEMO_PRODUCTS = [
    {
        "name": "AMD Ryzen 7 7800X3D",
        "description": "8-core gaming processor with 3D V-Cache.",
        "price": 449.0,
        "category": "Processors",
        "brand": "AMD",
        "rating": 4.9,
        "stock": 20,
        "featured": True,
        "specifications": [
            {"name": "Cores", "value": 8},
            {"name": "Base Clock", "value": 4.2, "unit": "GHz"},
            {"name": "Socket", "value": "AM5"},
        ],
    },
    {
        "name": "Intel Core i5-13400F",
        "description": "10-core processor for budget gaming builds.",
        "price": 199.0,
        "category": "Processors",
        "brand": "Intel",
        "rating": 4.5,
        "stock": 30,
        "specifications": [
            {"name": "Cores", "value": 10},
            {"name": "Base Clock", "value": 2.5, "unit": "GHz"},
            {"name": "Socket", "value": "LGA1700"},
        ],
    },
    {
        "name": "ASUS TUF RTX 4070 Super",
        "description": "12GB graphics card for high refresh 1440p gaming.",
        "price": 629.0,
        "category": "Graphics Cards",
        "brand": "ASUS",
        "rating": 4.7,
        "stock": 10,
        "featured": True,
        "specifications": [
            {"name": "VRAM", "value": 12, "unit": "GB"},
            {"name": "Chipset", "value": "NVIDIA GeForce RTX 4070 Super"},
            {"name": "Ray Tracing", "value": True},
        ],
    },
    {
        "name": "NVIDIA RTX 4060 Founders Edition",
        "description": "Efficient 1080p graphics card.",
        "price": 299.0,
        "category": "Graphics Cards",
        "brand": "NVIDIA",
        "rating": 4.3,
        "stock": 15,
        "specifications": [
            {"name": "VRAM", "value": 8, "unit": "GB"},
            {"name": "Ray Tracing", "value": True},
        ],
    },
    {
        "name": "Corsair Vengeance 32GB DDR5-6000",
        "description": "2x16GB low-latency DDR5 kit.",
        "price": 119.0,
        "category": "Memory",
        "brand": "Corsair",
        "rating": 4.6,
        "stock": 40,
        "specifications": [
            {"name": "Capacity", "value": 32, "unit": "GB"},
            {"name": "Type", "value": "DDR5"},
            {"name": "Speed", "value": 6000, "unit": "MHz"},
        ],
    },
    {
        "name": "Samsung 990 Pro 2TB",
        "description": "PCIe 4.0 NVMe SSD.",
        "price": 169.0,
        "category": "Storage",
        "brand": "Samsung",
        "rating": 4.8,
        "stock": 25,
        "specifications": [
            {"name": "Capacity", "value": 2000, "unit": "GB"},
            {"name": "Interface", "value": "NVMe"},
        ],
    },
    {
        "name": "NeuraBook Pro",
        "description": "Powerful laptop for professionals with high-end specifications.",
        "price": 1299.99,
        "category": "Laptops",
        "brand": "NeuraRig",
        "rating": 4.5,
        "stock": 15,
        "featured": True,
        "specifications": [
            {"name": "Processor", "value": "Intel Core i7-12700H"},
            {"name": "Display", "value": 15.6, "unit": "in"},
        ],
    },
]


def _insert(database, collection: str, model) -> object:
    now = datetime.now(timezone.utc)
    doc = {**model.model_dump(), "created_at": now, "updated_at": now}
    return database[collection].insert_one(doc).inserted_id


def seed_database(database) -> dict:
    seeded = False
    if database["product"].count_documents({}) == 0:
        category_ids = {}
        for c in DEMO_CATEGORIES:
            existing = database["category"].find_one({"slug": slugify(c["name"])})
            category_ids[c["name"]] = existing["_id"] if existing else _insert(
                database, "category", Category(slug=slugify(c["name"]), **c))
        brand_ids = {}
        for name in DEMO_BRANDS:
            existing = database["brand"].find_one({"slug": slugify(name)})
            brand_ids[name] = existing["_id"] if existing else _insert(
                database, "brand", Brand(name=name, slug=slugify(name)))
        for p in DEMO_PRODUCTS:
            data = {**p, "category": category_ids[p["category"]], "brand": brand_ids[p["brand"]]}
            _insert(database, "product", Product(**data))
        seeded = True
        logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))

    admin_created = False
    if database["user"].count_documents({"role": "admin"}) == 0:
        if database["user"].find_one({"email": ADMIN_EMAIL}):
            # never promote an account someone else registered
            logger.warning("Not creating super admin: %s is already registered", ADMIN_EMAIL)
        else:
            admin = User(name="Super Admin", email=ADMIN_EMAIL, password_hash=hash_password(ADMIN_PASSWORD), role="admin")
            _insert(database, "user", admin)
            admin_created = True
            logger.info("Super admin created: %s", ADMIN_EMAIL)

    return {
        "seeded": seeded,
        "admin_created": admin_created,
        "products": database["product"].count_documents({}),
    }


if __name__ == "__main__":
    from database import db

    logging.basicConfig(level=logging.INFO)
    if db is None:
        raise SystemExit("DATABASE_URL and DATABASE_NAME must be set")
    print(seed_database(db))
