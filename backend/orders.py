"""
Orders

Placing an order is the one write that spans several documents: each product's
stock is decremented and the order is inserted as a single unit of work. Stock
is decremented with a conditional update (`stock >= quantity`), so two buyers
racing for the last unit cannot both win. Without a transaction-capable
deployment the decrements already applied are reverted before the error
propagates.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from database import create_document, get_db, pagination, serialize, session_kwargs, to_object_id, transaction, utcnow
from schemas import Order as OrderSchema, OrderItem as OrderItemSchema, OrderStatus, Role
from security import get_current_user, user_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

CENT = Decimal("0.01")

# Transitions a buyer may make on their own order.
BUYER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

# Admins also drive fulfilment.
ADMIN_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


class OrderItemPayload(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)


class CreateOrderPayload(BaseModel):
    items: List[OrderItemPayload] = Field(min_length=1)
    shipping_info: str = Field(min_length=1)


class UpdateStatusPayload(BaseModel):
    status: str


def allowed_transitions(current: OrderStatus, is_admin: bool = False) -> set:
    table = ADMIN_TRANSITIONS if is_admin else BUYER_TRANSITIONS
    return table.get(current, set())


def _merge_quantities(items: List[OrderItemPayload]) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return merged


def _price_items(db, requested: Dict[str, int]):
    """Validate every requested product and snapshot it as an order item."""
    total = Decimal("0")
    snapshots = []
    for product_id, quantity in requested.items():
        oid = to_object_id(product_id)
        product = db["product"].find_one({"_id": oid}) if oid else None
        if not product:
            raise HTTPException(404, f"Product with ID {product_id} not found")
        if not product.get("is_active") or not product.get("is_approved"):
            raise HTTPException(400, f"Product {product['title']} is not available for purchase")
        stock = product.get("stock", 0)
        if stock < quantity:
            raise HTTPException(
                400,
                f"Insufficient stock for product {product['title']}. Available: {stock}, Requested: {quantity}",
            )

        price = Decimal(str(product["price"])).quantize(CENT, rounding=ROUND_HALF_UP)
        subtotal = price * quantity
        total += subtotal
        snapshots.append(OrderItemSchema(
            product_id=str(product["_id"]),
            seller_id=product["seller_id"],
            product_name=product["title"],
            price=float(price),
            quantity=quantity,
            subtotal=float(subtotal),
        ))
    return snapshots, total.quantize(CENT, rounding=ROUND_HALF_UP)


def _decrement_stock(db, snapshots: List[OrderItemSchema], session=None) -> List[OrderItemSchema]:
    applied = []
    try:
        for item in snapshots:
            res = db["product"].update_one(
                {"_id": to_object_id(item.product_id), "stock": {"$gte": item.quantity}},
                {"$inc": {"stock": -item.quantity}, "$set": {"updated_at": utcnow()}},
                **session_kwargs(session),
            )
            if res.matched_count == 0:
                raise HTTPException(400, f"Insufficient stock for product {item.product_name}")
            applied.append(item)
    except Exception:
        if session is None:
            _restock(db, applied)
        raise
    return applied


def _restock(db, items: List[OrderItemSchema]):
    for item in items:
        db["product"].update_one({"_id": to_object_id(item.product_id)}, {"$inc": {"stock": item.quantity}})


def place_order(db, buyer_id: str, payload: CreateOrderPayload) -> str:
    """Validate, decrement stock and insert the order. Returns the new order id."""
    try:
        snapshots, total = _price_items(db, _merge_quantities(payload.items))
        order = OrderSchema(buyer_id=buyer_id, items=snapshots, total=float(total), shipping_info=payload.shipping_info)
        with transaction(db) as session:
            applied = _decrement_stock(db, snapshots, session=session)
            try:
                order_id = create_document(db, "order", order, session=session)
            except PyMongoError:
                if session is None:
                    _restock(db, applied)
                raise
    except HTTPException:
        raise
    except PyMongoError:
        logger.exception("Order creation failed for buyer %s", buyer_id)
        raise HTTPException(400, "Failed to create order. Please try again.")

    ordered = {s.product_id for s in snapshots}
    cart = db["cart"].find_one({"user_id": buyer_id})
    if cart:
        remaining = [i for i in cart.get("items", []) if i["product_id"] not in ordered]
        db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": remaining, "updated_at": utcnow()}})
    return order_id


def present_orders(db, docs: List[dict]) -> List[dict]:
    """Serialize orders, joining the buyer and each item's product and seller."""
    orders = [serialize(d) for d in docs]
    user_ids = {o["buyer_id"] for o in orders}
    product_ids = set()
    for o in orders:
        for item in o["items"]:
            user_ids.add(item["seller_id"])
            product_ids.add(item["product_id"])
    user_oids = [oid for oid in (to_object_id(u) for u in user_ids) if oid]
    product_oids = [oid for oid in (to_object_id(p) for p in product_ids) if oid]
    users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_oids}})}
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": product_oids}})}

    for o in orders:
        o["buyer"] = user_summary(users.get(o["buyer_id"]))
        for item in o["items"]:
            product = products.get(item["product_id"])
            item["product"] = {
                "id": item["product_id"],
                "title": product.get("title") if product else item["product_name"],
                "thumbnail": product.get("thumbnail") if product else None,
                "seller": user_summary(users.get(item["seller_id"])),
            }
    return orders


def _find_visible(db, order_id: str, user: dict) -> dict:
    oid = to_object_id(order_id)
    filt: dict = {"_id": oid}
    if user.get("role") != Role.ADMIN.value:
        filt["buyer_id"] = user["id"]
    order = db["order"].find_one(filt) if oid else None
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@router.post("", status_code=201)
def create_order(body: CreateOrderPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s creating a new order with %d items", user["id"], len(body.items))
    order_id = place_order(db, user["id"], body)
    created = db["order"].find_one({"_id": to_object_id(order_id)})
    return {"message": "Order created successfully", "data": present_orders(db, [created])[0]}


@router.get("")
def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    logger.info("User %s fetching their orders", user["id"])
    filt: dict = {"buyer_id": user["id"]}
    if status:
        filt["status"] = status.value
    total = db["order"].count_documents(filt)
    docs = db["order"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {
        "message": "Orders retrieved successfully",
        "data": {"orders": present_orders(db, list(docs)), "pagination": pagination(page, limit, total)},
    }


@router.get("/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s fetching order %s", user["id"], order_id)
    order = _find_visible(db, order_id, user)
    return {"message": "Order retrieved successfully", "data": present_orders(db, [order])[0]}


@router.patch("/{order_id}/status")
def update_order_status(order_id: str, body: UpdateStatusPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s updating order %s status to %s", user["id"], order_id, body.status)
    order = _find_visible(db, order_id, user)
    try:
        target = OrderStatus(body.status)
    except ValueError:
        raise HTTPException(400, "Invalid order status")

    current = OrderStatus(order["status"])
    is_admin = user.get("role") == Role.ADMIN.value
    if target not in allowed_transitions(current, is_admin):
        raise HTTPException(400, f"Cannot change order status from {current.value} to {target.value}")

    changes = {"status": target.value, "updated_at": utcnow()}
    if target == OrderStatus.DELIVERED:
        changes["delivered_at"] = utcnow()
    # Only applies if the status is still the one validated above.
    res = db["order"].update_one({"_id": order["_id"], "status": current.value}, {"$set": changes})
    if res.matched_count == 0:
        raise HTTPException(409, "Order status changed concurrently, please retry")
    updated = db["order"].find_one({"_id": order["_id"]})
    return {"message": "Order status updated successfully", "data": present_orders(db, [updated])[0]}
