import json
import logging
import os
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from bson.objectid import ObjectId
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo.errors import DuplicateKeyError

import uploads
from chatbot import GROQ_MODEL, PcBuilderAssistant, build_llm
from database import db, create_document, ensure_indexes, get_documents
from schemas import (
    ORDER_STATUSES,
    USER_ROLES,
    Brand as BrandSchema,
    Category as CategorySchema,
    CategorySpecification,
    Order as OrderSchema,
    OrderItem as OrderItemSchema,
    Product as ProductSchema,
    ProductSpecification,
    ShippingAddress,
    User as UserSchema,
)
from security import create_token, decode_token, hash_password, verify_password
from seed import seed_database
from uploads import discard_uploads, remove_upload, save_upload, save_uploads
from utils import is_object_id, public_url, serialize_doc, slugify, to_object_id, unique_slug

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("neurarig")

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
MAX_PRODUCT_IMAGES = 5
DEFAULT_BRAND_LOGO = "/uploads/brands/default-brand.png"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is None:
        logger.warning("Database not configured; set DATABASE_URL and DATABASE_NAME")
    else:
        ensure_indexes(db)
    yield


app = FastAPI(title="NeuraRig API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=uploads.UPLOAD_DIR, check_dir=False), name="uploads")

assistant = PcBuilderAssistant(llm=build_llm())


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "Duplicate key error"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong!"})


# ----------------------- Utils -----------------------
security = HTTPBearer(auto_error=False)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def validation_detail(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]


def parse_json_list(raw: Optional[str], label: str) -> Optional[list]:
    if raw is None or raw.strip() == "":
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} format")
    if not isinstance(value, list):
        raise HTTPException(status_code=400, detail=f"{label.capitalize()} must be an array")
    return value


def parse_specifications(raw: Optional[str], model) -> Optional[list]:
    items = parse_json_list(raw, "specifications")
    if items is None:
        return None
    specs = []
    for item in items:
        if not isinstance(item, dict):
            raise HTTPException(status_code=400, detail="Invalid specifications format")
        try:
            specs.append(model(**item))
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=validation_detail(e))
    return specs


def get_or_404(collection: str, oid: ObjectId, label: str) -> dict:
    doc = db[collection].find_one({"_id": oid})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def resolve_ref(collection: str, value: str) -> Optional[ObjectId]:
    """Find a category/brand by id or slug."""
    query = {"_id": ObjectId(value)} if is_object_id(value) else {"slug": value.lower()}
    doc = db[collection].find_one(query, {"_id": 1})
    return doc["_id"] if doc else None


def public_user(doc: dict) -> dict:
    user = serialize_doc(doc)
    user.pop("password_hash", None)
    return user


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id or not is_object_id(user_id):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return public_user(user)


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Access denied")
    return user


def auth_response(user: dict) -> dict:
    suser = public_user(user)
    token = create_token({"id": suser["id"], "role": suser.get("role", "user")})
    return {
        "token": token,
        "user": {"id": suser["id"], "name": suser["name"], "email": suser["email"], "role": suser.get("role", "user")},
    }


# ----------------------- Serializers -----------------------
def category_out(doc: dict) -> dict:
    out = serialize_doc(doc)
    out["image"] = public_url(doc.get("image"))
    return out


def brand_out(doc: dict) -> dict:
    out = serialize_doc(doc)
    out["logo"] = public_url(doc.get("logo"))
    return out


def populate_products(docs) -> List[dict]:
    docs = list(docs)
    category_ids = list({d["category"] for d in docs if d.get("category")})
    brand_ids = list({d["brand"] for d in docs if d.get("brand")})
    categories = {c["_id"]: c for c in db["category"].find({"_id": {"$in": category_ids}}, {"name": 1, "slug": 1})}
    brands = {b["_id"]: b for b in db["brand"].find({"_id": {"$in": brand_ids}}, {"name": 1, "logo": 1})}
    out = []
    for d in docs:
        item = serialize_doc(d)
        category = categories.get(d.get("category"))
        brand = brands.get(d.get("brand"))
        item["category"] = serialize_doc(category) if category else None
        item["brand"] = brand_out(brand) if brand else None
        item["images"] = [public_url(i) for i in d.get("images", [])]
        out.append(item)
    return out


def populate_product(doc: dict) -> dict:
    return populate_products([doc])[0]


def populate_orders(docs, with_user: bool = False) -> List[dict]:
    docs = list(docs)
    users = {}
    if with_user:
        user_ids = list({d["user"] for d in docs})
        users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})}
    product_ids = list({i["product"] for d in docs for i in d.get("items", [])})
    products = {p["id"]: p for p in populate_products(db["product"].find({"_id": {"$in": product_ids}}))}
    out = []
    for d in docs:
        item = serialize_doc(d)
        # deleted products show as None, the line keeps its name and price
        for line in item.get("items", []):
            line["product"] = products.get(line["product"])
        if with_user:
            user = users.get(d["user"])
            item["user"] = serialize_doc(user) if user else None
        out.append(item)
    return out


def cart_items_out(items: List[dict]) -> List[dict]:
    products = {p["id"]: p for p in populate_products(db["product"].find({"_id": {"$in": [i["product"] for i in items]}}))}
    out = []
    for i in items:
        product = products.get(str(i["product"]))
        if product is None:
            continue
        out.append({"product": product, "quantity": i["quantity"], "price": i["price"]})
    return out


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class RoleBody(BaseModel):
    role: str


class UserUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    role: Optional[Literal["user", "admin"]] = None


class FeaturedBody(BaseModel):
    featured: bool


class CartAddBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartUpdateBody(BaseModel):
    quantity: int


class OrderItemBody(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderCreateBody(BaseModel):
    items: List[OrderItemBody]
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)
    total: Optional[float] = None


class StatusBody(BaseModel):
    status: str


class RecommendBody(BaseModel):
    query: str
    selected_components: Dict[str, str] = {}


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "NeuraRig API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth & Users -----------------------
@app.post("/api/users/register", status_code=201)
def register(body: RegisterBody):
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")
    user = UserSchema(name=body.name.strip(), email=email, password_hash=hash_password(body.password))
    user_id = create_document("user", user)
    logger.info("Registered user %s", email)
    return auth_response(db["user"].find_one({"_id": ObjectId(user_id)}))


@app.post("/api/users/login")
def login(body: LoginBody):
    user = db["user"].find_one({"email": body.email.lower()})
    if not user or not verify_password(body.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return auth_response(user)


@app.get("/api/users/me")
def me(user=Depends(get_current_user)):
    return user


@app.get("/api/users")
def list_users(admin=Depends(require_admin)):
    users = []
    for u in db["user"].find().sort("created_at", -1):
        item = public_user(u)
        item["orders"] = db["order"].count_documents({"user": u["_id"]})
        users.append(item)
    return users


@app.get("/api/users/{user_id}")
def get_user(user_id: str, admin=Depends(require_admin)):
    user = get_or_404("user", to_object_id(user_id, "user"), "User")
    orders = list(db["order"].find({"user": user["_id"]}).sort("created_at", -1))
    out = public_user(user)
    out["orders"] = len(orders)
    out["order_history"] = populate_orders(orders)
    return out


@app.patch("/api/users/{user_id}/role")
def update_user_role(user_id: str, body: RoleBody, admin=Depends(require_admin)):
    if body.role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    oid = to_object_id(user_id, "user")
    get_or_404("user", oid, "User")
    db["user"].update_one({"_id": oid}, {"$set": {"role": body.role, "updated_at": now_utc()}})
    logger.info("User %s role set to %s by %s", user_id, body.role, admin["email"])
    return public_user(db["user"].find_one({"_id": oid}))


@app.put("/api/users/{user_id}")
def update_user(user_id: str, body: UserUpdateBody, admin=Depends(require_admin)):
    oid = to_object_id(user_id, "user")
    get_or_404("user", oid, "User")
    update = body.model_dump(exclude_none=True)
    if "email" in update:
        update["email"] = update["email"].lower()
        if db["user"].find_one({"email": update["email"], "_id": {"$ne": oid}}):
            raise HTTPException(status_code=400, detail="Email already in use")
    if not update:
        raise HTTPException(status_code=400, detail="No changes")
    update["updated_at"] = now_utc()
    db["user"].update_one({"_id": oid}, {"$set": update})
    return public_user(db["user"].find_one({"_id": oid}))


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, admin=Depends(require_admin)):
    oid = to_object_id(user_id, "user")
    if oid == ObjectId(admin["id"]):
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    get_or_404("user", oid, "User")
    db["user"].delete_one({"_id": oid})
    db["cart"].delete_one({"user": oid})
    logger.info("User %s deleted by %s", user_id, admin["email"])
    return {"message": "User deleted"}


@app.get("/api/users/{user_id}/orders")
def get_user_orders(user_id: str, user=Depends(get_current_user)):
    oid = to_object_id(user_id, "user")
    if user.get("role") != "admin" and oid != ObjectId(user["id"]):
        raise HTTPException(status_code=403, detail="Access denied")
    return populate_orders(db["order"].find({"user": oid}).sort("created_at", -1))


# ----------------------- Categories -----------------------
@app.get("/api/categories")
def list_categories():
    return [category_out(c) for c in db["category"].find().sort("name", 1)]


@app.get("/api/categories/slug/{slug}")
def get_category_by_slug(slug: str):
    category = db["category"].find_one({"slug": slug.lower()})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category_out(category)


@app.get("/api/categories/{category_id}")
def get_category(category_id: str):
    return category_out(get_or_404("category", to_object_id(category_id, "category"), "Category"))


@app.post("/api/categories", status_code=201)
def create_category(
    name: Optional[str] = Form(None),
    slug: Optional[str] = Form(None),
    specifications: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    admin=Depends(require_admin),
):
    if not name or not name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    if image is None:
        raise HTTPException(status_code=400, detail="Image is required")
    specs = parse_specifications(specifications, CategorySpecification) or []
    base = slugify(slug or name)
    if not base:
        raise HTTPException(status_code=400, detail="Could not derive a slug from the name")

    category = CategorySchema(
        name=name.strip(),
        slug=unique_slug(db["category"], base),
        specifications=specs,
    )
    category.image = save_upload(image, "categories", "category")
    try:
        category_id = create_document("category", category)
    except Exception:
        remove_upload(category.image)
        raise
    logger.info("Category %s created with slug %s", category.name, category.slug)
    return category_out(db["category"].find_one({"_id": ObjectId(category_id)}))


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: str,
    name: Optional[str] = Form(None),
    slug: Optional[str] = Form(None),
    specifications: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    admin=Depends(require_admin),
):
    oid = to_object_id(category_id, "category")
    category = get_or_404("category", oid, "Category")
    update = {}
    if name is not None:
        if not name.strip():
            raise HTTPException(status_code=400, detail="Name is required")
        update["name"] = name.strip()
    if slug or (name is not None and update["name"] != category["name"]):
        base = slugify(slug or update["name"])
        if not base:
            raise HTTPException(status_code=400, detail="Could not derive a slug from the name")
        update["slug"] = unique_slug(db["category"], base, exclude_id=oid)
    specs = parse_specifications(specifications, CategorySpecification)
    if specs is not None:
        update["specifications"] = [s.model_dump() for s in specs]
    if image is not None:
        update["image"] = save_upload(image, "categories", "category")

    update["updated_at"] = now_utc()
    try:
        db["category"].update_one({"_id": oid}, {"$set": update})
    except Exception:
        remove_upload(update.get("image"))
        raise
    if image is not None:
        remove_upload(category.get("image"))
    return category_out(db["category"].find_one({"_id": oid}))


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, admin=Depends(require_admin)):
    oid = to_object_id(category_id, "category")
    category = get_or_404("category", oid, "Category")
    in_use = db["product"].count_documents({"category": oid})
    if in_use:
        raise HTTPException(status_code=400, detail=f"Category is used by {in_use} product(s)")
    db["category"].delete_one({"_id": oid})
    remove_upload(category.get("image"))
    return {"message": "Category deleted"}


# ----------------------- Brands -----------------------
def check_brand_name(name: str, exclude_id: Optional[ObjectId] = None) -> str:
    name = (name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Brand name is required")
    query = {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}
    slug_query = {"slug": slugify(name)}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
        slug_query["_id"] = {"$ne": exclude_id}
    if db["brand"].find_one(query):
        raise HTTPException(status_code=400, detail="A brand with this name already exists")
    if db["brand"].find_one(slug_query):
        raise HTTPException(status_code=400, detail="A brand with a similar name already exists")
    return name


@app.get("/api/brands")
def list_brands():
    return [brand_out(b) for b in db["brand"].find().sort("name", 1)]


@app.get("/api/brands/{brand_id}")
def get_brand(brand_id: str):
    return brand_out(get_or_404("brand", to_object_id(brand_id, "brand"), "Brand"))


@app.post("/api/brands", status_code=201)
def create_brand(
    name: Optional[str] = Form(None),
    logo: Optional[UploadFile] = File(None),
    admin=Depends(require_admin),
):
    name = check_brand_name(name)
    brand = BrandSchema(name=name, slug=slugify(name))
    if logo is not None:
        brand.logo = save_upload(logo, "brands", "brand")
    try:
        brand_id = create_document("brand", brand)
    except Exception:
        if logo is not None:
            remove_upload(brand.logo)
        raise
    logger.info("Brand %s created", name)
    return brand_out(db["brand"].find_one({"_id": ObjectId(brand_id)}))


@app.put("/api/brands/{brand_id}")
def update_brand(
    brand_id: str,
    name: Optional[str] = Form(None),
    logo: Optional[UploadFile] = File(None),
    admin=Depends(require_admin),
):
    oid = to_object_id(brand_id, "brand")
    brand = get_or_404("brand", oid, "Brand")
    name = check_brand_name(name, exclude_id=oid)
    update = {"name": name, "slug": slugify(name), "updated_at": now_utc()}
    if logo is not None:
        update["logo"] = save_upload(logo, "brands", "brand")
    try:
        db["brand"].update_one({"_id": oid}, {"$set": update})
    except Exception:
        remove_upload(update.get("logo"))
        raise
    if logo is not None and brand.get("logo") != DEFAULT_BRAND_LOGO:
        remove_upload(brand.get("logo"))
    return brand_out(db["brand"].find_one({"_id": oid}))


@app.delete("/api/brands/{brand_id}")
def delete_brand(brand_id: str, admin=Depends(require_admin)):
    oid = to_object_id(brand_id, "brand")
    brand = get_or_404("brand", oid, "Brand")
    in_use = db["product"].count_documents({"brand": oid})
    if in_use:
        raise HTTPException(status_code=400, detail=f"Brand is used by {in_use} product(s)")
    db["brand"].delete_one({"_id": oid})
    if brand.get("logo") != DEFAULT_BRAND_LOGO:
        remove_upload(brand.get("logo"))
    return {"message": "Brand deleted"}


# ----------------------- Products -----------------------
PRODUCT_SORTS = {
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "rating": [("rating", -1)],
    "newest": [("created_at", -1)],
    "name": [("name", 1)],
}


def lookup_ref(collection: str, value: str, label: str) -> ObjectId:
    oid = to_object_id(value, label.lower())
    if not db[collection].find_one({"_id": oid}, {"_id": 1}):
        raise HTTPException(status_code=400, detail=f"{label} not found")
    return oid


def save_product_images(files: List[UploadFile]) -> List[str]:
    if len(files) > MAX_PRODUCT_IMAGES:
        raise HTTPException(status_code=400, detail=f"You can upload at most {MAX_PRODUCT_IMAGES} images")
    return save_uploads(files, "products", "product")


@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    q: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: Optional[bool] = None,
    featured: Optional[bool] = None,
    sort: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
):
    filt = {}
    if category:
        category_id = resolve_ref("category", category)
        if category_id is None:
            return []
        filt["category"] = category_id
    if brand:
        brand_id = resolve_ref("brand", brand)
        if brand_id is None:
            return []
        filt["brand"] = brand_id
    if q:
        pattern = re.escape(q.strip())
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    price = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        filt["price"] = price
    if in_stock is not None:
        filt["stock"] = {"$gt": 0} if in_stock else 0
    if featured is not None:
        filt["featured"] = featured
    if sort and sort not in PRODUCT_SORTS:
        raise HTTPException(status_code=400, detail="Invalid sort option")

    cursor = db["product"].find(filt)
    if sort:
        cursor = cursor.sort(PRODUCT_SORTS[sort])
    return populate_products(cursor.limit(limit))


@app.get("/api/products/search")
def search_products(q: Optional[str] = None):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    pattern = re.escape(q.strip())
    products = db["product"].find({
        "$or": [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    })
    results = populate_products(products)
    logger.info('Search for "%s" found %d products', q, len(results))
    return results


@app.get("/api/products/featured")
def featured_products():
    return populate_products(db["product"].find({"featured": True}))


@app.get("/api/products/category/{slug}")
def products_by_category(slug: str):
    category = db["category"].find_one({"slug": slug.lower()})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return populate_products(db["product"].find({"category": category["_id"]}))


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return populate_product(get_or_404("product", to_object_id(product_id, "product"), "Product"))


@app.post("/api/products", status_code=201)
def create_product(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    category: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    stock: Optional[int] = Form(None),
    rating: float = Form(0),
    featured: bool = Form(False),
    specifications: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    admin=Depends(require_admin),
):
    required = [name, description, price, category, brand, stock]
    if any(v is None or (isinstance(v, str) and not v.strip()) for v in required):
        raise HTTPException(status_code=400, detail="Missing required fields")
    specs = parse_specifications(specifications, ProductSpecification) or []
    try:
        product = ProductSchema(
            name=name.strip(),
            description=description,
            price=price,
            category=lookup_ref("category", category, "Category"),
            brand=lookup_ref("brand", brand, "Brand"),
            stock=stock,
            rating=rating,
            featured=featured,
            specifications=specs,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=validation_detail(e))
    product.images = save_product_images(images or [])
    try:
        product_id = create_document("product", product)
    except Exception:
        discard_uploads(product.images)
        raise
    logger.info("Product %s created by %s", product.name, admin["email"])
    return populate_product(db["product"].find_one({"_id": ObjectId(product_id)}))


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    category: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    stock: Optional[int] = Form(None),
    rating: Optional[float] = Form(None),
    featured: Optional[bool] = Form(None),
    specifications: Optional[str] = Form(None),
    existing_images: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    admin=Depends(require_admin),
):
    oid = to_object_id(product_id, "product")
    product = get_or_404("product", oid, "Product")

    update = {}
    for field, value in (("name", name), ("description", description), ("price", price),
                         ("stock", stock), ("rating", rating), ("featured", featured)):
        if value is not None and not (isinstance(value, str) and not value.strip()):
            update[field] = value
    if category:
        update["category"] = lookup_ref("category", category, "Category")
    if brand:
        update["brand"] = lookup_ref("brand", brand, "Brand")
    specs = parse_specifications(specifications, ProductSpecification)
    if specs is not None:
        update["specifications"] = specs

    merged = {k: v for k, v in product.items() if k in ProductSchema.model_fields}
    merged.update(update)
    try:
        validated = ProductSchema(**merged)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=validation_detail(e))

    current = product.get("images", [])
    kept = current
    if existing_images is not None:
        wanted = parse_json_list(existing_images, "existing_images") or []
        kept = [i for i in current if i in wanted or public_url(i) in wanted]
    new_paths = save_product_images(images or [])

    data = validated.model_dump()
    data["images"] = kept + new_paths
    data["updated_at"] = now_utc()
    try:
        db["product"].update_one({"_id": oid}, {"$set": data})
    except Exception:
        discard_uploads(new_paths)
        raise
    discard_uploads([p for p in current if p not in kept])
    return populate_product(db["product"].find_one({"_id": oid}))


@app.patch("/api/products/{product_id}/featured")
def set_featured(product_id: str, body: FeaturedBody, admin=Depends(require_admin)):
    oid = to_object_id(product_id, "product")
    get_or_404("product", oid, "Product")
    db["product"].update_one({"_id": oid}, {"$set": {"featured": body.featured, "updated_at": now_utc()}})
    return populate_product(db["product"].find_one({"_id": oid}))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin)):
    oid = to_object_id(product_id, "product")
    product = get_or_404("product", oid, "Product")
    db["product"].delete_one({"_id": oid})
    discard_uploads(product.get("images", []))
    logger.info("Product %s deleted by %s", product_id, admin["email"])
    return {"message": "Product deleted"}


@app.delete("/api/products/{product_id}/images/{image_index}")
def delete_product_image(product_id: str, image_index: int, admin=Depends(require_admin)):
    oid = to_object_id(product_id, "product")
    product = get_or_404("product", oid, "Product")
    images = product.get("images", [])
    if image_index < 0 or image_index >= len(images):
        raise HTTPException(status_code=400, detail="Invalid image index")
    removed = images.pop(image_index)
    remove_upload(removed)
    db["product"].update_one({"_id": oid}, {"$set": {"images": images, "updated_at": now_utc()}})
    return {"message": "Image deleted successfully"}


# ----------------------- Cart -----------------------
def get_or_create_cart(user_oid: ObjectId) -> dict:
    cart = db["cart"].find_one({"user": user_oid})
    if cart is None:
        now = now_utc()
        db["cart"].update_one(
            {"user": user_oid},
            {"$setOnInsert": {"user": user_oid, "items": [], "created_at": now}, "$set": {"updated_at": now}},
            upsert=True,
        )
        cart = db["cart"].find_one({"user": user_oid})
    return cart


def save_cart(cart: dict, items: List[dict]) -> None:
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": now_utc()}})


def check_stock(product: dict, quantity: int) -> None:
    available = product.get("stock", 0)
    if quantity > available:
        raise HTTPException(
            status_code=400,
            detail=f"Not enough stock available for {product['name']}. Available: {available}, Requested: {quantity}",
        )


@app.get("/api/cart")
def get_cart(user=Depends(get_current_user)):
    cart = get_or_create_cart(ObjectId(user["id"]))
    return cart_items_out(cart["items"])


@app.post("/api/cart")
def add_to_cart(body: CartAddBody, user=Depends(get_current_user)):
    pid = to_object_id(body.product_id, "product")
    product = get_or_404("product", pid, "Product")
    cart = get_or_create_cart(ObjectId(user["id"]))
    items = cart["items"]
    line = next((i for i in items if i["product"] == pid), None)
    quantity = (line["quantity"] if line else 0) + body.quantity
    check_stock(product, quantity)
    if line:
        line["quantity"] = quantity
    else:
        items.append({"product": pid, "quantity": body.quantity, "price": float(product["price"])})
    save_cart(cart, items)
    return cart_items_out(items)


@app.put("/api/cart/{product_id}")
def update_cart_item(product_id: str, body: CartUpdateBody, user=Depends(get_current_user)):
    pid = to_object_id(product_id, "product")
    cart = get_or_create_cart(ObjectId(user["id"]))
    items = cart["items"]
    line = next((i for i in items if i["product"] == pid), None)
    if line is None:
        raise HTTPException(status_code=404, detail="Item not found in cart")
    if body.quantity <= 0:
        items.remove(line)
    else:
        check_stock(get_or_404("product", pid, "Product"), body.quantity)
        line["quantity"] = body.quantity
    save_cart(cart, items)
    return cart_items_out(items)


@app.delete("/api/cart/{product_id}")
def remove_cart_item(product_id: str, user=Depends(get_current_user)):
    pid = to_object_id(product_id, "product")
    cart = get_or_create_cart(ObjectId(user["id"]))
    items = [i for i in cart["items"] if i["product"] != pid]
    save_cart(cart, items)
    return cart_items_out(items)


@app.delete("/api/cart")
def clear_cart(user=Depends(get_current_user)):
    cart = get_or_create_cart(ObjectId(user["id"]))
    save_cart(cart, [])
    return {"message": "Cart cleared"}


# ----------------------- Orders -----------------------
def restore_stock(order: dict) -> None:
    for item in order["items"]:
        db["product"].update_one({"_id": item["product"]}, {"$inc": {"stock": item["quantity"]}})
        logger.info("Restored %d units to product %s (%s)", item["quantity"], item["name"], item["product"])


def get_order_for(order_id: str, user: dict) -> dict:
    order = get_or_404("order", to_object_id(order_id, "order"), "Order")
    if str(order["user"]) != user["id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Access denied")
    return order


@app.post("/api/orders", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user)):
    if not body.items:
        raise HTTPException(status_code=400, detail="Order must contain items")

    quantities: Dict[ObjectId, int] = {}
    for item in body.items:
        pid = to_object_id(item.product_id, "product")
        quantities[pid] = quantities.get(pid, 0) + item.quantity

    lines = []
    for pid, quantity in quantities.items():
        product = db["product"].find_one({"_id": pid})
        if not product:
            raise HTTPException(status_code=404, detail=f"Product with ID {pid} not found")
        check_stock(product, quantity)
        lines.append(OrderItemSchema(product=pid, name=product["name"], price=float(product["price"]), quantity=quantity))

    total = round(sum(line.price * line.quantity for line in lines), 2)
    if body.total is not None and round(body.total, 2) != total:
        raise HTTPException(status_code=400, detail="Total mismatch")

    reserved = []
    for line in lines:
        res = db["product"].update_one(
            {"_id": line.product, "stock": {"$gte": line.quantity}},
            {"$inc": {"stock": -line.quantity}},
        )
        if res.modified_count == 0:
            for done in reserved:
                db["product"].update_one({"_id": done.product}, {"$inc": {"stock": done.quantity}})
            raise HTTPException(status_code=400, detail=f"Not enough stock available for {line.name}")
        reserved.append(line)

    order = OrderSchema(
        user=ObjectId(user["id"]),
        items=lines,
        total=total,
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
    )
    order_id = create_document("order", order)
    db["cart"].update_one({"user": ObjectId(user["id"])}, {"$set": {"items": [], "updated_at": now_utc()}})
    logger.info("Order %s placed by %s, total %.2f", order_id, user["email"], total)
    return serialize_doc(db["order"].find_one({"_id": ObjectId(order_id)}))


@app.get("/api/orders")
def list_orders(admin=Depends(require_admin)):
    return populate_orders(db["order"].find().sort("created_at", -1), with_user=True)


@app.get("/api/orders/my-orders")
def my_orders(user=Depends(get_current_user)):
    return populate_orders(db["order"].find({"user": ObjectId(user["id"])}).sort("created_at", -1))


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    return populate_orders([get_order_for(order_id, user)], with_user=True)[0]


@app.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusBody, admin=Depends(require_admin)):
    if body.status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status value")
    order = get_or_404("order", to_object_id(order_id, "order"), "Order")
    # cancelled orders are final
    res = db["order"].update_one(
        {"_id": order["_id"], "status": {"$ne": "cancelled"}},
        {"$set": {"status": body.status, "updated_at": now_utc()}},
    )
    if res.matched_count == 0 and body.status != "cancelled":
        raise HTTPException(status_code=400, detail="Cancelled orders cannot be reopened")
    if res.modified_count == 1 and body.status == "cancelled":
        restore_stock(order)
    logger.info("Order %s status %s -> %s", order_id, order["status"], body.status)
    return populate_orders([db["order"].find_one({"_id": order["_id"]})], with_user=True)[0]


@app.patch("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user)):
    order = get_or_404("order", to_object_id(order_id, "order"), "Order")
    if str(order["user"]) != user["id"]:
        raise HTTPException(status_code=403, detail="Access denied")
    res = db["order"].update_one(
        {"_id": order["_id"], "status": "processing"},
        {"$set": {"status": "cancelled", "updated_at": now_utc()}},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=400, detail="Only processing orders can be cancelled")
    restore_stock(order)
    logger.info("Order %s cancelled by %s", order_id, user["email"])
    return serialize_doc(db["order"].find_one({"_id": order["_id"]}))


# ----------------------- Admin -----------------------
@app.get("/api/admin/stats")
def admin_stats(admin=Depends(require_admin)):
    by_status = {s: 0 for s in ORDER_STATUSES}
    revenue = 0.0
    for o in db["order"].find({}, {"status": 1, "total": 1}):
        by_status[o["status"]] = by_status.get(o["status"], 0) + 1
        if o["status"] != "cancelled":
            revenue += o.get("total", 0)
    low_stock = db["product"].find({"stock": {"$lte": LOW_STOCK_THRESHOLD}}).sort("stock", 1)
    return {
        "users": db["user"].count_documents({}),
        "products": db["product"].count_documents({}),
        "categories": db["category"].count_documents({}),
        "brands": db["brand"].count_documents({}),
        "orders": db["order"].count_documents({}),
        "orders_by_status": by_status,
        "revenue": round(revenue, 2),
        "low_stock": populate_products(low_stock),
    }


# ----------------------- PC Builder Chatbot -----------------------
def load_catalog() -> List[dict]:
    return populate_products(get_documents("product", {"stock": {"$gt": 0}}))


@app.post("/api/chatbot/recommend")
def recommend(body: RecommendBody):
    query = body.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")
    selected = {}
    for slot, product_id in body.selected_components.items():
        product = db["product"].find_one({"_id": to_object_id(product_id, "product")})
        if product:
            selected[slot] = populate_product(product)
    return assistant.recommend(query, selected, load_catalog)


@app.get("/api/chatbot/status")
def chatbot_status():
    configured = assistant.llm is not None
    return {
        "configured": configured,
        "reachable": assistant.ping() if configured else False,
        "model": GROQ_MODEL if configured else None,
    }


# ----------------------- Seed Demo Data -----------------------
@app.post("/seed")
def seed():
    result = seed_database(db)
    assistant.clear_cache()
    return result


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
