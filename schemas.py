"""
Database Schemas for the Storefront

Each Pydantic model corresponds to one MongoDB collection, or to a snapshot
embedded in one. Collection names are the lowercase class names, with
ProductSubmission stored in "product_submission".
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

CATEGORIES = ("electronics", "fashion", "furniture", "grocery", "gaming", "beauty", "books")
Category = Literal["electronics", "fashion", "furniture", "grocery", "gaming", "beauty", "books"]

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "return-requested", "cancelled")
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "return-requested", "cancelled"]

SubmissionStatus = Literal["pending", "approved", "rejected"]
UserRole = Literal["user", "seller"]


class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password_hash: str
    role: UserRole = "user"
    is_active: bool = True
    store_name: Optional[str] = None
    store_description: Optional[str] = None
    is_verified: Optional[bool] = None


class Admin(BaseModel):
    email: EmailStr
    password_hash: str


class Rating(BaseModel):
    rate: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Review(BaseModel):
    user: str
    name: str
    rating: float = Field(..., ge=1, le=5)
    comment: str = ""


class Product(BaseModel):
    title: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0)
    category: Category
    image: str
    stock: int = Field(0, ge=0)
    rating: Rating = Field(default_factory=Rating)
    reviews: List[Review] = []
    is_featured: bool = False
    is_custom: bool = True
    source: Literal["database", "frontend"] = "database"
    seller: Optional[str] = None
    store_name: Optional[str] = None
    external_id: Optional[str] = None
    submission_id: Optional[str] = None


class ProductSubmission(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: Category
    image: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    product_id: str
    title: str
    price: float
    quantity: int
    image: Optional[str] = None


class ShippingDetails(BaseModel):
    first_name: str
    last_name: str
    address: str
    city: str
    state: str
    postal_code: str
    phone: str
    email: EmailStr


class PaymentDetails(BaseModel):
    method: Literal["card", "cod"]
    card_number: Optional[str] = None
    card_name: Optional[str] = None
    expiry_date: Optional[str] = None

    @model_validator(mode="after")
    def card_details_present(self):
        if self.method == "card" and not (self.card_number and self.card_name and self.expiry_date):
            raise ValueError("Card payments require card number, name and expiry date")
        return self

    def masked(self) -> dict:
        data = self.model_dump()
        if self.card_number:
            digits = "".join(ch for ch in self.card_number if ch.isdigit())
            data["card_number"] = "**** **** **** " + digits[-4:]
        return data


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    shipping: ShippingDetails
    payment: PaymentDetails
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    return_reason: Optional[str] = None
    tracking_number: Optional[str] = None
    delivered_at: Optional[datetime] = None


class CartItem(BaseModel):
    product_id: str
    title: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    quantity: int = Field(1, ge=1)


class WishlistItem(BaseModel):
    product_id: str
    title: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[Rating] = None
