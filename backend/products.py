import logging
import os
import re
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, pagination, serialize, to_object_id, utcnow
from schemas import Product as ProductSchema, Review as ReviewSchema
from security import get_current_user, require_admin, user_summary

logger = logging.getLogger(__name__)

AUTO_APPROVE_PRODUCTS = os.getenv("AUTO_APPROVE_PRODUCTS", "true").lower() == "true"

router = APIRouter(prefix="/api/products", tags=["products"])


class CreateProductPayload(BaseModel):
    title: str = Field(min_length=1)
    category: str = Field(min_length=1)
    description: str = Field(min_length=1)
    price: float = Field(ge=0)
    quantity: int = Field(ge=1)
    condition: str = Field(min_length=1)
    year_of_manufacture: Optional[int] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    dimension_length: Optional[float] = None
    dimension_width: Optional[float] = None
    dimension_height: Optional[float] = None
    weight: Optional[float] = None
    material: Optional[str] = None
    color: Optional[str] = None
    original_packaging: bool = False
    manual_included: bool = False
    working_condition_desc: Optional[str] = None
    thumbnail: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    stock: int = Field(default=0, ge=0)
    is_active: bool = True


class UpdateProductPayload(BaseModel):
    title: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=1)
    condition: Optional[str] = None
    year_of_manufacture: Optional[int] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    dimension_length: Optional[float] = None
    dimension_width: Optional[float] = None
    dimension_height: Optional[float] = None
    weight: Optional[float] = None
    material: Optional[str] = None
    color: Optional[str] = None
    original_packaging: Optional[bool] = None
    manual_included: Optional[bool] = None
    working_condition_desc: Optional[str] = None
    thumbnail: Optional[str] = None
    images: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ApprovalPayload(BaseModel):
    is_approved: bool


class ReviewPayload(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None


class ProductFilters(BaseModel):
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    seller_id: Optional[str] = None
    is_active: Optional[bool] = True
    search: Optional[str] = None
    condition: Optional[str] = None
    brand: Optional[str] = None
    approved_only: bool = True

    def to_query(self) -> dict:
        filt: dict = {}
        if self.is_active is not None:
            filt["is_active"] = self.is_active
        if self.approved_only:
            filt["is_approved"] = True
        if self.category:
            filt["category"] = self.category
        if self.seller_id:
            filt["seller_id"] = self.seller_id
        if self.condition:
            filt["condition"] = self.condition
        if self.brand:
            filt["brand"] = {"$regex": f"^{re.escape(self.brand)}$", "$options": "i"}
        if self.min_price is not None or self.max_price is not None:
            filt["price"] = {}
            if self.min_price is not None:
                filt["price"]["$gte"] = self.min_price
            if self.max_price is not None:
                filt["price"]["$lte"] = self.max_price
        if self.search:
            pattern = {"$regex": re.escape(self.search), "$options": "i"}
            filt["$or"] = [{"title": pattern}, {"description": pattern}]
        return filt


# ---------- helpers ----------

def _ratings(db, product_ids: List[str]) -> Dict[str, List[int]]:
    ratings: Dict[str, List[int]] = {pid: [] for pid in product_ids}
    for r in db["review"].find({"product_id": {"$in": product_ids}}):
        ratings.setdefault(r["product_id"], []).append(r["rating"])
    return ratings


def _sellers(db, seller_ids) -> Dict[str, dict]:
    oids = [oid for oid in (to_object_id(s) for s in set(seller_ids)) if oid]
    return {str(u["_id"]): user_summary(u) for u in db["user"].find({"_id": {"$in": oids}})}


def present_products(db, docs: List[dict]) -> List[dict]:
    """Serialize products with their seller summary and rating aggregate."""
    items = [serialize(d) for d in docs]
    ratings = _ratings(db, [p["id"] for p in items])
    sellers = _sellers(db, [p["seller_id"] for p in items])
    for p in items:
        scores = ratings.get(p["id"], [])
        p["average_rating"] = sum(scores) / len(scores) if scores else 0
        p["review_count"] = len(scores)
        p["seller"] = sellers.get(p["seller_id"])
    return items


def _find_product(db, product_id: str) -> dict:
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise HTTPException(404, "Product not found")
    return product


def _find_owned(db, product_id: str, user: dict) -> dict:
    product = _find_product(db, product_id)
    if product["seller_id"] != user["id"]:
        raise HTTPException(403, "You are not authorized to modify this product")
    return product


def _list(db, filters: ProductFilters, page: int, limit: int) -> dict:
    query = filters.to_query()
    total = db["product"].count_documents(query)
    docs = db["product"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {"products": present_products(db, list(docs)), "pagination": pagination(page, limit, total)}


def _filters(
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    is_active: Optional[bool] = Query(True, alias="isActive"),
    search: Optional[str] = None,
    condition: Optional[str] = None,
    brand: Optional[str] = None,
) -> ProductFilters:
    return ProductFilters(
        category=category,
        min_price=min_price,
        max_price=max_price,
        is_active=is_active,
        search=search,
        condition=condition,
        brand=brand,
    )


# ---------- listing ----------

@router.get("")
def list_products(
    filters: ProductFilters = Depends(_filters),
    seller_id: Optional[str] = Query(None, alias="sellerId"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
):
    filters.seller_id = seller_id
    return {"message": "Products retrieved successfully", "data": _list(db, filters, page, limit)}


@router.get("/my-products")
def my_products(
    filters: ProductFilters = Depends(_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    logger.info("User %s fetching their own products", user["id"])
    filters.seller_id = user["id"]
    filters.approved_only = False
    return {"message": "Your products retrieved successfully", "data": _list(db, filters, page, limit)}


@router.get("/by-user/{user_id}")
def products_by_user(
    user_id: str,
    filters: ProductFilters = Depends(_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
):
    logger.info("Fetching products listed by user %s", user_id)
    filters.seller_id = user_id
    filters.is_active = True
    return {"message": "User products retrieved successfully", "data": _list(db, filters, page, limit)}


# ---------- single product ----------

@router.get("/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    product = _find_product(db, product_id)
    return {"message": "Product retrieved successfully", "data": present_products(db, [product])[0]}


@router.post("", status_code=201)
def create_product(body: CreateProductPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s creating a new product: %s", user["id"], body.title)
    product = ProductSchema(seller_id=user["id"], is_approved=AUTO_APPROVE_PRODUCTS, **body.model_dump())
    pid = create_document(db, "product", product)
    created = db["product"].find_one({"_id": to_object_id(pid)})
    return {"message": "Product created successfully", "data": present_products(db, [created])[0]}


@router.put("/{product_id}")
def update_product(product_id: str, body: UpdateProductPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s updating product %s", user["id"], product_id)
    product = _find_owned(db, product_id, user)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    changes["updated_at"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    updated = db["product"].find_one({"_id": product["_id"]})
    return {"message": "Product updated successfully", "data": present_products(db, [updated])[0]}


@router.delete("/{product_id}")
def delete_product(product_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s deleting product %s", user["id"], product_id)
    product = _find_owned(db, product_id, user)
    db["product"].delete_one({"_id": product["_id"]})
    db["review"].delete_many({"product_id": str(product["_id"])})
    return {"message": "Product deleted successfully"}


@router.patch("/{product_id}/approval")
def set_approval(product_id: str, body: ApprovalPayload, admin: dict = Depends(require_admin), db=Depends(get_db)):
    logger.info("Admin %s setting approval of product %s to %s", admin["id"], product_id, body.is_approved)
    product = _find_product(db, product_id)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"is_approved": body.is_approved, "updated_at": utcnow()}})
    updated = db["product"].find_one({"_id": product["_id"]})
    return {"message": "Product approval updated successfully", "data": present_products(db, [updated])[0]}


# ---------- reviews ----------

@router.get("/{product_id}/reviews")
def list_reviews(product_id: str, db=Depends(get_db)):
    product = _find_product(db, product_id)
    docs = db["review"].find({"product_id": str(product["_id"])}).sort("created_at", -1)
    return {"message": "Reviews retrieved successfully", "data": [serialize(d) for d in docs]}


@router.post("/{product_id}/reviews", status_code=201)
def add_review(product_id: str, body: ReviewPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    product = _find_product(db, product_id)
    pid = str(product["_id"])
    if product["seller_id"] == user["id"]:
        raise HTTPException(400, "You cannot review your own product")
    if db["review"].find_one({"product_id": pid, "user_id": user["id"]}):
        raise HTTPException(409, "You have already reviewed this product")

    logger.info("User %s reviewing product %s", user["id"], pid)
    review = ReviewSchema(product_id=pid, user_id=user["id"], **body.model_dump())
    try:
        rid = create_document(db, "review", review)
    except DuplicateKeyError:
        raise HTTPException(409, "You have already reviewed this product")
    created = db["review"].find_one({"_id": to_object_id(rid)})
    return {"message": "Review added successfully", "data": serialize(created)}
