import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import catalog
import orders
import vendors
import wishlist
from database import db as default_db, ensure_indexes, get_db
from errors import MarketplaceError
from schemas import (
    AccountStatus,
    ApplicationStatus,
    BusinessAddress,
    BusinessProfile,
    ContactPerson,
    CustomizationOption,
    InitialProduct,
    OrderStatus,
    PaymentDetails,
    PaymentMethod,
    ShippingAddress,
    Variant,
)
from security import get_current_user, require_role

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("marketplace")

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "Admin@1234")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    if default_db is not None:
        ensure_indexes(default_db)
    else:
        logger.warning("DATABASE_URL is not set; data endpoints will answer 500")
    yield


# App and CORS
app = FastAPI(title="Marketplace API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error rendering
@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message, "error": type(exc).__name__})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"message": "Please fill all required fields correctly", "error": "ValidationError",
                 "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail, "error": "HTTPError"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# Request Models
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=60)
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UpdatePasswordRequest(BaseModel):
    old_password: str
    new_password: str


class ApplicationUpdateRequest(BaseModel):
    business_name: Optional[str] = Field(None, min_length=1)
    tax_id: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    certifications: Optional[List[str]] = None
    business_address: Optional[BusinessAddress] = None
    business_description: Optional[str] = Field(None, min_length=1)
    contact_person: Optional[ContactPerson] = None
    website: Optional[str] = None
    social_media_links: Optional[List[str]] = None
    business_registration_number: Optional[str] = Field(None, min_length=1)
    store_type: Optional[str] = Field(None, min_length=1)
    payment_details: Optional[PaymentDetails] = None
    initial_product_list: Optional[List[InitialProduct]] = Field(None, min_length=1)
    preferred_shipping_methods: Optional[List[str]] = None
    shop_images: Optional[List[str]] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AccountStatusRequest(BaseModel):
    active: AccountStatus


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    brand: Optional[str] = None
    description: str = Field(..., min_length=1)
    images: List[str] = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    price: float = Field(..., gt=0)
    discount: float = Field(0, ge=0, le=100)
    stock: int = Field(..., ge=0)
    variants: List[Variant] = Field(default_factory=list)
    customization_options: List[CustomizationOption] = Field(default_factory=list)
    slug: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    brand: Optional[str] = None
    description: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    tags: Optional[List[str]] = None
    price: Optional[float] = Field(None, gt=0)
    discount: Optional[float] = Field(None, ge=0, le=100)
    stock: Optional[int] = Field(None, ge=0)
    variants: Optional[List[Variant]] = None
    customization_options: Optional[List[CustomizationOption]] = None
    slug: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class ReviewCreateRequest(BaseModel):
    product_id: str
    order_id: str
    rating: int
    review_text: str


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = None
    review_text: Optional[str] = None


class CartItemRequest(BaseModel):
    product_id: str
    quantity: int = 1
    customization: Dict[str, Any] = Field(default_factory=dict)


class PlaceOrderRequest(BaseModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "cod"
    notes: Optional[str] = None


class OrderStatusRequest(BaseModel):
    status: OrderStatus


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Marketplace API running"}


@app.get("/test")
def test_database():
    if default_db is None:
        return {"backend": "ok", "database": "missing", "collections": []}
    try:
        return {"backend": "ok", "database": "ok", "collections": default_db.list_collection_names()}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {str(e)[:80]}"}


# Auth Routes
@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, db=Depends(get_db)):
    user = accounts.register_user(db, payload.username, payload.email, payload.password)
    return {"message": "Registered successfully", "user": user}


@app.post("/auth/login")
def login(payload: LoginRequest, db=Depends(get_db)):
    result = accounts.login_user(db, payload.email, payload.password)
    return {"message": "Logged in successfully", **result}


@app.get("/me")
def me(current_user=Depends(get_current_user)):
    return {"message": "Current user", "user": current_user}


@app.put("/auth/password")
def update_password(payload: UpdatePasswordRequest, current_user=Depends(get_current_user), db=Depends(get_db)):
    accounts.change_password(db, current_user["id"], payload.old_password, payload.new_password)
    return {"message": "Password updated"}


@app.post("/init/bootstrap", status_code=201)
def bootstrap_admin(db=Depends(get_db)):
    """Create the default admin from ADMIN_EMAIL / ADMIN_PASSWORD if none exists."""
    user = accounts.bootstrap_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
    return {"message": "Admin created", "user": user}


# Vendor application routes
@app.post("/vendor/applications", status_code=201)
def submit_vendor_application(payload: BusinessProfile, current_user=Depends(require_role("consumer")),
                              db=Depends(get_db)):
    application = vendors.submit_application(db, current_user, payload)
    return {"message": "Vendor application submitted, waiting for admin approval", "application": application}


@app.get("/vendor/applications/me")
def my_vendor_application(current_user=Depends(get_current_user), db=Depends(get_db)):
    application = vendors.get_latest_application(db, current_user["id"])
    return {"message": "Vendor application fetched", "application": application}


@app.patch("/vendor/applications/{application_id}")
def update_vendor_application(application_id: str, payload: ApplicationUpdateRequest,
                              current_user=Depends(get_current_user), db=Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    application = vendors.update_application(db, current_user, application_id, changes)
    return {"message": "Vendor application updated successfully", "application": application}


# Admin routes
@app.get("/admin/vendor-applications")
def admin_list_applications(status: Optional[ApplicationStatus] = None, admin=Depends(require_role("admin")),
                            db=Depends(get_db)):
    return {"message": "Vendor applications fetched", "applications": vendors.list_applications(db, status)}


@app.get("/admin/vendor-applications/{application_id}")
def admin_get_application(application_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"message": "Vendor application fetched", "application": vendors.get_application(db, application_id)}


@app.post("/admin/vendor-applications/{application_id}/approve")
def admin_approve_application(application_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    application = vendors.approve_application(db, admin, application_id)
    return {"message": "Vendor application approved", "application": application}


@app.post("/admin/vendor-applications/{application_id}/reject")
def admin_reject_application(application_id: str, payload: Optional[RejectRequest] = None,
                             admin=Depends(require_role("admin")), db=Depends(get_db)):
    reason = payload.reason if payload else None
    application = vendors.reject_application(db, admin, application_id, reason)
    return {"message": "Vendor application rejected", "application": application}


@app.get("/admin/users")
def admin_list_users(role: Optional[str] = None, active: Optional[AccountStatus] = None,
                     admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"message": "Users fetched", "users": accounts.list_users(db, role, active)}


@app.patch("/admin/users/{user_id}/status")
def admin_update_user_status(user_id: str, payload: AccountStatusRequest, admin=Depends(require_role("admin")),
                             db=Depends(get_db)):
    user = accounts.set_account_status(db, admin, user_id, payload.active)
    return {"message": "User status updated", "user": user}


@app.get("/admin/dashboard")
def admin_dashboard(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"message": "Dashboard fetched", **accounts.dashboard_counts(db)}


@app.get("/admin/orders")
def admin_list_orders(status: Optional[OrderStatus] = None, admin=Depends(require_role("admin")),
                      db=Depends(get_db)):
    return {"message": "Orders fetched", "orders": orders.list_orders(db, status=status)}


@app.get("/admin/products")
def admin_list_products(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"message": "Products fetched", "products": catalog.list_products(db, include_inactive=True, limit=0)}


@app.get("/admin/reviews")
def admin_list_reviews(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"message": "Reviews fetched", "reviews": catalog.list_reviews(db)}


# Products
@app.get("/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    vendor_id: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db=Depends(get_db),
):
    products = catalog.list_products(db, q=q, category=category, vendor_id=vendor_id,
                                     min_price=min_price, max_price=max_price, limit=limit)
    return {"message": "Products fetched successfully", "products": products}


@app.post("/products", status_code=201)
def create_product(payload: ProductCreateRequest, vendor=Depends(require_role("vendor")), db=Depends(get_db)):
    product = catalog.create_product(db, vendor, payload.model_dump())
    return {"message": "Product created successfully", "product": product}


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return {"message": "Product fetched successfully", "product": catalog.get_product(db, product_id)}


@app.patch("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdateRequest,
                   current_user=Depends(require_role("vendor", "admin")), db=Depends(get_db)):
    product = catalog.update_product(db, current_user, product_id, payload.model_dump(exclude_unset=True))
    return {"message": "Product updated successfully", "product": product}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, current_user=Depends(require_role("vendor", "admin")), db=Depends(get_db)):
    catalog.delete_product(db, current_user, product_id)
    return {"message": "Product deleted successfully"}


@app.get("/products/{product_id}/reviews")
def product_reviews(product_id: str, db=Depends(get_db)):
    catalog.get_product(db, product_id)
    return {"message": "Reviews fetched successfully", "reviews": catalog.list_reviews(db, product_id)}


@app.get("/vendor/products")
def vendor_products(vendor=Depends(require_role("vendor")), db=Depends(get_db)):
    products = catalog.list_products(db, vendor_id=vendor["id"], include_inactive=True, limit=0)
    return {"message": "Products fetched successfully", "products": products}


@app.get("/vendor/orders")
def vendor_orders(vendor=Depends(require_role("vendor")), db=Depends(get_db)):
    return {"message": "Orders fetched successfully", "orders": orders.list_orders(db, vendor_id=vendor["id"])}


# Reviews
@app.post("/reviews", status_code=201)
def submit_review(payload: ReviewCreateRequest, current_user=Depends(get_current_user), db=Depends(get_db)):
    result = catalog.submit_review(db, current_user, payload.product_id, payload.order_id,
                                   payload.rating, payload.review_text)
    return {"message": "Review submitted successfully", **result}


@app.patch("/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdateRequest, current_user=Depends(get_current_user),
                  db=Depends(get_db)):
    result = catalog.update_review(db, current_user, review_id, payload.rating, payload.review_text)
    return {"message": "Review updated successfully", **result}


@app.delete("/reviews/{review_id}")
def delete_review(review_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    aggregate = catalog.delete_review(db, current_user, review_id)
    return {"message": "Review deleted successfully", **aggregate}


# Cart
@app.get("/cart")
def get_cart(current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Cart fetched", "cart": orders.get_cart(db, current_user["id"])}


@app.post("/cart/items", status_code=201)
def add_to_cart(payload: CartItemRequest, current_user=Depends(get_current_user), db=Depends(get_db)):
    cart = orders.add_to_cart(db, current_user["id"], payload.product_id, payload.quantity, payload.customization)
    return {"message": "Product added to cart successfully", "cart": cart}


@app.delete("/cart/items/{product_id}")
def remove_from_cart(product_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    cart = orders.remove_from_cart(db, current_user["id"], product_id)
    return {"message": "Product removed from cart successfully", "cart": cart}


@app.delete("/cart")
def clear_cart(current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Cart cleared", "cart": orders.clear_cart(db, current_user["id"])}


# Orders
@app.post("/orders", status_code=201)
def place_order(payload: PlaceOrderRequest, current_user=Depends(get_current_user), db=Depends(get_db)):
    order = orders.place_order(db, current_user, payload.shipping_address, payload.payment_method, payload.notes)
    return {"message": "Order placed successfully", "order": order}


@app.get("/orders/me")
def my_orders(current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Orders fetched successfully", "orders": orders.list_orders(db, customer_id=current_user["id"])}


@app.get("/orders/{order_id}")
def get_order(order_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Order fetched successfully", "order": orders.get_order(db, current_user, order_id)}


@app.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusRequest,
                        current_user=Depends(require_role("admin", "vendor")), db=Depends(get_db)):
    order = orders.update_order_status(db, current_user, order_id, payload.status)
    return {"message": "Order status updated", "order": order}


@app.post("/orders/{order_id}/cancel")
def cancel_order(order_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Order cancelled", "order": orders.cancel_order(db, current_user, order_id)}


# Wishlist
@app.get("/wishlist")
def get_wishlist(current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Wishlist fetched", "wishlist": wishlist.get_wishlist(db, current_user["id"])}


@app.post("/wishlist/{product_id}", status_code=201)
def add_to_wishlist(product_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Product added to wishlist", "wishlist": wishlist.add_product(db, current_user, product_id)}


@app.delete("/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Product removed from wishlist",
            "wishlist": wishlist.remove_product(db, current_user, product_id)}


@app.delete("/wishlist")
def clear_wishlist(current_user=Depends(get_current_user), db=Depends(get_db)):
    return {"message": "All products removed from wishlist", "wishlist": wishlist.clear(db, current_user)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
