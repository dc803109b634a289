"""Shopping cart, order placement and the order status state machine."""

import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, find_by_id, now, sanitize, to_obj_id
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import Cart, CartItem, Order, OrderItem, ShippingAddress

logger = logging.getLogger(__name__)

# pending -> confirmed -> processing -> shipped -> delivered, or cancelled before delivery
NEXT_STATUS = {
    "pending": "confirmed",
    "confirmed": "processing",
    "processing": "shipped",
    "shipped": "delivered",
}
CANCELLABLE = tuple(NEXT_STATUS)


def can_transition(current: str, target: str) -> bool:
    if target == "cancelled":
        return current in CANCELLABLE
    return NEXT_STATUS.get(current) == target


# Cart

def get_cart(db, user_id: str) -> Dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        try:
            create_document(db, "cart", Cart(user_id=user_id))
        except DuplicateKeyError:
            logger.debug("Cart for %s created by a concurrent request", user_id)
        cart = db["cart"].find_one({"user_id": user_id})
    return sanitize(cart)


def add_to_cart(db, user_id: str, product_id: str, quantity: int = 1,
                customization: Optional[Dict[str, Any]] = None) -> Dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    product = db["product"].find_one({"_id": to_obj_id(product_id)})
    if not product or not product.get("is_active", True):
        raise NotFoundError("Product not found")

    customization = customization or {}
    cart = get_cart(db, user_id)
    items = cart.get("items", [])
    for it in items:
        if it["product_id"] == product_id and (it.get("customization") or {}) == customization:
            it["quantity"] = it.get("quantity", 1) + quantity
            break
    else:
        images = product.get("images") or []
        items.append(CartItem(
            product_id=product_id,
            name=product["name"],
            price=float(product["price"]),
            image=images[0] if images else "",
            quantity=quantity,
            customization=customization,
        ).model_dump())
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": items, "updated_at": now()}})
    return get_cart(db, user_id)


def remove_from_cart(db, user_id: str, product_id: str) -> Dict:
    cart = get_cart(db, user_id)
    items = [it for it in cart.get("items", []) if it["product_id"] != product_id]
    if len(items) == len(cart.get("items", [])):
        raise NotFoundError("This product is not in your cart")
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": items, "updated_at": now()}})
    return get_cart(db, user_id)


def clear_cart(db, user_id: str) -> Dict:
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": now()}}, upsert=True)
    return get_cart(db, user_id)


# Orders

def place_order(db, user: Dict, shipping_address: ShippingAddress, payment_method: str = "cod",
                notes: Optional[str] = None) -> Dict:
    cart = get_cart(db, user["id"])
    if not cart.get("items"):
        raise ValidationError("Cart is empty")

    line_items: List[OrderItem] = []
    total = 0.0
    for it in cart["items"]:
        prod = db["product"].find_one({"_id": to_obj_id(it["product_id"])})
        if not prod or not prod.get("is_active", True):
            raise ValidationError(f"Product {it['product_id']} is no longer available")
        price = float(prod["price"])
        qty = int(it.get("quantity", 1))
        total += price * qty
        images = prod.get("images") or []
        line_items.append(OrderItem(
            product_id=it["product_id"],
            vendor_id=prod["vendor_id"],
            name=prod["name"],
            image=images[0] if images else "",
            price=price,
            quantity=qty,
            customization=it.get("customization") or {},
        ))

    order = Order(
        customer_id=user["id"],
        products=line_items,
        shipping_address=shipping_address,
        total_amount=round(total, 2),
        payment_method=payment_method,
        notes=notes,
    )
    order_id = create_document(db, "order", order)
    clear_cart(db, user["id"])
    logger.info("Order %s placed by %s for %.2f", order_id, user["id"], order.total_amount)
    return sanitize(db["order"].find_one({"_id": to_obj_id(order_id)}))


def _load_order(db, user: Dict, order_id: str, action: str) -> Dict:
    doc = find_by_id(db, "order", order_id)
    if doc is None:
        if user.get("role") == "admin":
            raise NotFoundError("Order not found")
        raise AuthorizationError(f"You are not authorized to {action}")
    return doc


def _vendor_has_items(order: Dict, vendor_id: str) -> bool:
    return any(p.get("vendor_id") == vendor_id for p in order.get("products", []))


def get_order(db, user: Dict, order_id: str) -> Dict:
    order = _load_order(db, user, order_id, "view this order")
    role = user.get("role")
    allowed = (
        order["customer_id"] == user["id"]
        or role == "admin"
        or (role == "vendor" and _vendor_has_items(order, user["id"]))
    )
    if not allowed:
        raise AuthorizationError("You are not authorized to view this order")
    return sanitize(order)


def list_orders(db, customer_id: Optional[str] = None, vendor_id: Optional[str] = None,
                status: Optional[str] = None) -> List[Dict]:
    q: Dict[str, Any] = {}
    if customer_id:
        q["customer_id"] = customer_id
    if vendor_id:
        q["products.vendor_id"] = vendor_id
    if status:
        q["status"] = status
    return [sanitize(o) for o in db["order"].find(q).sort([("created_at", DESCENDING), ("_id", DESCENDING)])]


def _apply_status(db, order: Dict, target: str) -> Dict:
    current = order.get("status", "pending")
    if not can_transition(current, target):
        raise ConflictError(f"Cannot change order status from {current} to {target}")
    doc = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": current},
        {"$set": {"status": target, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise ConflictError("Order status changed concurrently, please retry")
    logger.info("Order %s moved %s -> %s", order["_id"], current, target)
    return sanitize(doc)


def update_order_status(db, user: Dict, order_id: str, target: str) -> Dict:
    order = _load_order(db, user, order_id, "update this order")
    if user.get("role") != "admin" and not _vendor_has_items(order, user["id"]):
        raise AuthorizationError("You are not authorized to update this order")
    return _apply_status(db, order, target)


def cancel_order(db, user: Dict, order_id: str) -> Dict:
    order = _load_order(db, user, order_id, "cancel this order")
    if order["customer_id"] != user["id"] and user.get("role") != "admin":
        raise AuthorizationError("You are not authorized to cancel this order")
    return _apply_status(db, order, "cancelled")
