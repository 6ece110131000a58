import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, to_object_id, utcnow
from schemas import Cart as CartSchema, CartItem as CartItemSchema
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])


class AddToCartPayload(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartPayload(BaseModel):
    quantity: Optional[int] = Field(None, ge=1)


def _get_or_create_cart(db, user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        try:
            create_document(db, "cart", CartSchema(user_id=user_id))
        except DuplicateKeyError:
            logger.debug("Cart for user %s created concurrently", user_id)
        cart = db["cart"].find_one({"user_id": user_id})
    return cart


def _product_view(product: dict, seller: Optional[dict] = None) -> dict:
    view = {
        "id": str(product["_id"]),
        "title": product.get("title"),
        "price": float(product.get("price", 0)),
        "thumbnail": product.get("thumbnail"),
        "stock": product.get("stock", 0),
        "is_active": product.get("is_active", False),
    }
    if seller is not None:
        view["seller"] = {"id": str(seller["_id"]), "name": seller.get("name")}
    return view


def _item_view(item: dict, product: dict, seller: Optional[dict] = None) -> dict:
    view = _product_view(product, seller)
    return {
        "id": item["id"],
        "product_id": item["product_id"],
        "quantity": item["quantity"],
        "product": view,
        "subtotal": round(view["price"] * item["quantity"], 2),
    }


def _find_item(db, item_id: str, user: dict):
    """Locate a cart item by id and check it belongs to the caller's cart."""
    cart = db["cart"].find_one({"items.id": item_id})
    if not cart:
        raise HTTPException(404, "Cart item not found")
    if cart["user_id"] != user["id"]:
        raise HTTPException(403, "You can only modify your own cart items")
    item = next(i for i in cart["items"] if i["id"] == item_id)
    return cart, item


def cart_view(db, cart: dict) -> dict:
    items = cart.get("items", [])
    oids = [oid for oid in (to_object_id(i["product_id"]) for i in items) if oid]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}})}
    seller_oids = [oid for oid in (to_object_id(p["seller_id"]) for p in products.values()) if oid]
    sellers = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": seller_oids}})}

    views = []
    for item in items:
        product = products.get(item["product_id"])
        if product is None:
            continue
        views.append(_item_view(item, product, sellers.get(product["seller_id"])))

    return {
        "id": str(cart["_id"]),
        "items": views,
        "total": round(sum(v["subtotal"] for v in views), 2),
        "count": sum(v["quantity"] for v in views),
        "created_at": cart.get("created_at"),
        "updated_at": cart.get("updated_at"),
    }


@router.get("")
def get_cart(user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s requested cart items", user["id"])
    cart = _get_or_create_cart(db, user["id"])
    return {"message": "Cart fetched successfully", "data": cart_view(db, cart)}


@router.post("", status_code=201)
def add_to_cart(body: AddToCartPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s adding product %s to cart", user["id"], body.product_id)
    oid = to_object_id(body.product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise HTTPException(404, "Product not found")
    if not product.get("is_active"):
        raise HTTPException(400, "Product is not available")
    if product.get("stock", 0) < body.quantity:
        raise HTTPException(400, "Insufficient stock")
    if product["seller_id"] == user["id"]:
        raise HTTPException(400, "You cannot add your own products to cart")

    pid = str(product["_id"])
    cart = _get_or_create_cart(db, user["id"])
    existing = next((i for i in cart["items"] if i["product_id"] == pid), None)
    if existing:
        new_quantity = existing["quantity"] + body.quantity
        if new_quantity > product.get("stock", 0):
            raise HTTPException(400, "Insufficient stock for requested quantity")
        db["cart"].update_one(
            {"_id": cart["_id"], "items.id": existing["id"]},
            {"$set": {"items.$.quantity": new_quantity, "updated_at": utcnow()}},
        )
        item = {**existing, "quantity": new_quantity}
    else:
        item = CartItemSchema(id=str(ObjectId()), product_id=pid, quantity=body.quantity).model_dump()
        db["cart"].update_one({"_id": cart["_id"]}, {"$push": {"items": item}, "$set": {"updated_at": utcnow()}})

    return {"message": "Item added to cart successfully", "data": _item_view(item, product)}


@router.put("/{item_id}")
def update_cart_item(item_id: str, body: UpdateCartPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s updating cart item %s", user["id"], item_id)
    cart, item = _find_item(db, item_id, user)
    oid = to_object_id(item["product_id"])
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product or not product.get("is_active"):
        raise HTTPException(400, "Product is no longer available")

    if body.quantity is not None:
        if body.quantity > product.get("stock", 0):
            raise HTTPException(400, "Insufficient stock")
        db["cart"].update_one(
            {"_id": cart["_id"], "items.id": item_id},
            {"$set": {"items.$.quantity": body.quantity, "updated_at": utcnow()}},
        )
        item = {**item, "quantity": body.quantity}

    return {"message": "Cart item updated successfully", "data": _item_view(item, product)}


@router.delete("/{item_id}")
def remove_cart_item(item_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s removing cart item %s", user["id"], item_id)
    cart, _ = _find_item(db, item_id, user)
    db["cart"].update_one({"_id": cart["_id"]}, {"$pull": {"items": {"id": item_id}}, "$set": {"updated_at": utcnow()}})
    return {"message": "Item removed from cart successfully"}


@router.delete("")
def clear_cart(user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s clearing their cart", user["id"])
    cart = db["cart"].find_one({"user_id": user["id"]})
    if not cart:
        raise HTTPException(404, "Cart not found")
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": [], "updated_at": utcnow()}})
    return {"message": "Cart cleared successfully"}
