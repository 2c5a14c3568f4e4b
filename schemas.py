"""
Database Schemas for the NeuraRig storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
References to other documents are stored as ObjectIds.
"""
from typing import Any, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

ORDER_STATUSES = ["processing", "confirmed", "shipped", "delivered", "cancelled"]
USER_ROLES = ["user", "admin"]
SPECIFICATION_TYPES = ["text", "number", "select", "checkbox"]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Salted password hash")
    role: Literal["user", "admin"] = "user"


class CategorySpecification(BaseModel):
    """One attribute products of a category are expected to carry."""
    name: str = Field(..., min_length=1)
    type: Literal["text", "number", "select", "checkbox"] = "text"
    options: List[str] = []
    required: bool = False
    unit: Optional[str] = None

    @model_validator(mode="after")
    def check_options(self):
        if self.type == "select" and not self.options:
            raise ValueError(f"Specification '{self.name}' of type select needs options")
        return self


class Category(BaseModel):
    name: str
    slug: str
    image: str = "/placeholder.svg"
    specifications: List[CategorySpecification] = []


class Brand(BaseModel):
    name: str
    slug: str
    logo: str = "/uploads/brands/default-brand.png"


class ProductSpecification(BaseModel):
    name: str = Field(..., min_length=1)
    value: Any = None
    unit: Optional[str] = None


class Product(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    price: float = Field(..., ge=0)
    category: ObjectId
    brand: ObjectId
    images: List[str] = []
    specifications: List[ProductSpecification] = []
    stock: int = Field(..., ge=0)
    rating: float = Field(0, ge=0, le=5)
    featured: bool = False


class CartItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    product: ObjectId
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class Cart(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    items: List[CartItem] = []


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    product: ObjectId
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    items: List[OrderItem]
    total: float = Field(..., ge=0)
    shipping_address: ShippingAddress
    payment_method: str
    status: Literal["processing", "confirmed", "shipped", "delivered", "cancelled"] = "processing"
