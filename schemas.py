"""
Database Schemas for the Scentara perfume store

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name by default.

We store:
- User (profile, role, password reset state)
- Address (one document per saved address, owned by a user)
- Product
- Cart (one per user)
- Wishlist (one per user)
- Review
- Order (with frozen item and address snapshots)

References between collections are stored as id strings.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

import settings

Role = Literal["user", "admin", "superadmin"]
PaymentMethod = Literal["COD", "ONLINE"]
PaymentStatus = Literal["Pending", "Paid", "Failed", "Refunded"]
OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled", "Returned"]


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, unique")

    # Auth fields (stored in DB, but not returned in public responses)
    password: str = Field(..., description="Hashed password")
    role: Role = Field("user", description="user | admin | superadmin")

    profileImage: str = Field(settings.DEFAULT_PROFILE_IMAGE, description="Profile image URL")
    phone: Optional[str] = None
    gender: Optional[str] = None

    # Password reset
    resetOTP: Optional[str] = None
    resetOTPExpires: Optional[datetime] = None


class AddressFields(BaseModel):
    label: str = Field("Home", description="Home, Office, etc.")
    fullName: str
    phone: str
    pincode: str
    state: str
    city: str
    addressLine: str
    landmark: Optional[str] = None


class Address(AddressFields):
    """
    Addresses collection schema
    Collection name: "address"
    """
    userId: str = Field(..., description="Owning user id")
    isDefault: bool = Field(False, description="At most one default per user")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str
    brand: str
    description: Optional[str] = None
    category: str = Field(..., description="Men's, Women's, Unisex")
    fragranceType: Optional[str] = Field(None, description="Eau de Parfum, Eau de Toilette")
    volume: float = Field(..., ge=0, description="Volume in ml")
    price: float = Field(..., ge=0)
    originalPrice: Optional[float] = Field(None, ge=0, description="Pre-discount price")
    stock: int = Field(..., ge=0, description="Available inventory")
    ingredients: List[str] = Field(default_factory=list)
    topNotes: List[str] = Field(default_factory=list)
    middleNotes: List[str] = Field(default_factory=list)
    baseNotes: List[str] = Field(default_factory=list)
    image: str = Field(..., description="Image URL")
    rating: float = Field(0, ge=0, le=5, description="Average review rating")
    numReviews: int = Field(0, ge=0)
    isFeatured: bool = False


class CartItem(BaseModel):
    productId: str = Field(..., description="Product id as string")
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    """
    Carts collection schema
    Collection name: "cart"
    """
    userId: str
    items: List[CartItem] = Field(default_factory=list)
    version: int = Field(0, description="Bumped on every write")


class Wishlist(BaseModel):
    """
    Wishlists collection schema
    Collection name: "wishlist"
    """
    userId: str
    products: List[str] = Field(default_factory=list, description="Product ids, no duplicates")


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "review"
    """
    productId: str
    userId: str
    name: str = Field(..., description="Reviewer name at time of review")
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class OrderItem(BaseModel):
    product: str
    name: str
    image: Optional[str] = None
    price: float
    quantity: int


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    userId: str
    items: List[OrderItem]
    shippingAddress: AddressFields
    paymentMethod: PaymentMethod
    paymentStatus: PaymentStatus = "Pending"
    orderStatus: OrderStatus = "Pending"
    totalAmount: float
    transactionId: Optional[str] = None
    trackingId: Optional[str] = None
