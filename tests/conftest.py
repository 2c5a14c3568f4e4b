from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
import uploads
from chatbot import PcBuilderAssistant
from security import create_token, hash_password

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def make_user(db, name, email, password="secret123", role="user"):
    now = datetime.now(timezone.utc)
    user_id = db["user"].insert_one({
        "name": name,
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
        "created_at": now,
        "updated_at": now,
    }).inserted_id
    token = create_token({"id": str(user_id), "role": role})
    return {"id": str(user_id), "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture
def mock_db(monkeypatch):
    mdb = mongomock.MongoClient()["neurarig_test"]
    monkeypatch.setattr(database, "db", mdb)
    monkeypatch.setattr(main, "db", mdb)
    return mdb


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(uploads, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def client(mock_db, upload_dir, monkeypatch):
    monkeypatch.setattr(main, "assistant", PcBuilderAssistant(llm=None))
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def admin(mock_db):
    return make_user(mock_db, "Admin", "admin@example.com", role="admin")


@pytest.fixture
def customer(mock_db):
    return make_user(mock_db, "Casey", "casey@example.com")


@pytest.fixture
def other_customer(mock_db):
    return make_user(mock_db, "Robin", "robin@example.com")


@pytest.fixture
def catalog(mock_db):
    now = datetime.now(timezone.utc)

    def insert(collection, doc):
        return mock_db[collection].insert_one({**doc, "created_at": now, "updated_at": now}).inserted_id

    gpu = insert("category", {"name": "Graphics Cards", "slug": "graphics-cards", "image": "/placeholder.svg", "specifications": []})
    cpu = insert("category", {"name": "Processors", "slug": "processors", "image": "/placeholder.svg", "specifications": []})
    asus = insert("brand", {"name": "ASUS", "slug": "asus", "logo": "/uploads/brands/default-brand.png"})
    amd = insert("brand", {"name": "AMD", "slug": "amd", "logo": "/uploads/brands/default-brand.png"})

    def product(name, price, category, brand, stock, rating=4.0, featured=False, description="PC component"):
        return insert("product", {
            "name": name,
            "description": description,
            "price": price,
            "category": category,
            "brand": brand,
            "images": [],
            "specifications": [],
            "stock": stock,
            "rating": rating,
            "featured": featured,
        })

    return {
        "categories": {"gpu": gpu, "cpu": cpu},
        "brands": {"asus": asus, "amd": amd},
        "products": {
            "rtx4070": product("ASUS TUF RTX 4070", 629.0, gpu, asus, 10, rating=4.7, featured=True,
                               description="12GB graphics card for 1440p gaming"),
            "rtx4060": product("ASUS Dual RTX 4060", 299.0, gpu, asus, 0, rating=4.2),
            "ryzen": product("AMD Ryzen 7 7800X3D", 449.0, cpu, amd, 3, rating=4.9),
        },
    }
