"""
Database Schemas for the Marketplace

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: consumers, vendors and admins
- vendorapplication: a consumer's request to become a vendor
- product: catalog entries owned by a vendor
- review: verified-purchase reviews, unique per (product, user, order)
- order: placed orders with snapshotted line items
- cart: one shopping cart per user
- wishlist: one set of product ids per user

References between documents are stored as string ids.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["consumer", "vendor", "admin"]
AccountStatus = Literal["active", "inactive", "banned"]
ApplicationStatus = Literal["pending", "approved", "rejected"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["cod", "card", "bank", "paypal", "stripe"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


class User(BaseModel):
    username: str = Field(..., min_length=1, max_length=60)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field("consumer")
    active: AccountStatus = Field("active")


# Vendor applications

class BusinessAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class ContactPerson(BaseModel):
    name: str = Field(..., min_length=1)
    position: Optional[str] = None
    phone: str = Field(..., min_length=1)
    email: EmailStr


class PaymentDetails(BaseModel):
    bank_name: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=1)
    routing_number: str = Field(..., min_length=1)
    payment_method: Literal["bank", "paypal", "stripe"]


class InitialProduct(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list, description="Image URLs")


class BusinessProfile(BaseModel):
    """Business fields an applicant submits and may edit while pending."""
    business_name: str = Field(..., min_length=1)
    tax_id: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    certifications: List[str] = Field(default_factory=list)
    business_address: BusinessAddress
    business_description: str = Field(..., min_length=1)
    contact_person: ContactPerson
    website: Optional[str] = None
    social_media_links: List[str] = Field(default_factory=list)
    business_registration_number: str = Field(..., min_length=1)
    store_type: str = Field(..., min_length=1)
    payment_details: PaymentDetails
    initial_product_list: List[InitialProduct] = Field(..., min_length=1)
    preferred_shipping_methods: List[str] = Field(default_factory=list)
    shop_images: List[str] = Field(default_factory=list, description="Shop image URLs")


class VendorApplication(BusinessProfile):
    user_id: str = Field(..., description="Reference to user _id (applicant)")
    status: ApplicationStatus = Field("pending")
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


# Catalog

class Variant(BaseModel):
    option_name: str
    option_values: List[str] = Field(default_factory=list)


class CustomizationOption(BaseModel):
    type: str
    values: List[str] = Field(default_factory=list)


class Product(BaseModel):
    vendor_id: str = Field(..., description="Reference to user _id (vendor)")
    name: str = Field(..., min_length=1, max_length=200)
    brand: Optional[str] = None
    description: str = Field(..., min_length=1)
    images: List[str] = Field(..., min_length=1, description="Image URLs")
    category: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    price: float = Field(..., gt=0)
    discount: float = Field(0, ge=0, le=100, description="Percent off")
    stock: int = Field(..., ge=0)
    variants: List[Variant] = Field(default_factory=list)
    customization_options: List[CustomizationOption] = Field(default_factory=list)
    slug: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    rating: float = Field(0, ge=0, le=5, description="Average of review ratings")
    review_count: int = Field(0, ge=0, description="Number of reviews")


class Review(BaseModel):
    product_id: str
    vendor_id: Optional[str] = None
    user_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    review_text: str = Field(..., min_length=1, max_length=1000)


# Orders

class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = Field(..., min_length=1)


class CartItem(BaseModel):
    product_id: str
    name: str
    price: float
    image: str = ""
    quantity: int = Field(1, ge=1)
    customization: Dict[str, Any] = Field(default_factory=dict)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    """Line item snapshot taken when the order is placed."""
    product_id: str
    vendor_id: str
    name: str
    image: str = ""
    price: float
    quantity: int = Field(..., ge=1)
    customization: Dict[str, Any] = Field(default_factory=dict)


class Order(BaseModel):
    customer_id: str
    products: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    total_amount: float = Field(..., ge=0)
    payment_method: PaymentMethod = "cod"
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "pending"
    notes: Optional[str] = None


class Wishlist(BaseModel):
    user_id: str
    products: List[str] = Field(default_factory=list)
