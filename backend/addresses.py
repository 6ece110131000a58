import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from database import create_document, get_db, serialize, session_kwargs, to_object_id, transaction, utcnow
from schemas import Address as AddressSchema
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/address", tags=["address"])


class CreateAddressPayload(BaseModel):
    street: str
    city: str
    state: str
    county: Optional[str] = None
    pincode: str
    country: Optional[str] = None
    is_default: bool = False


class UpdateAddressPayload(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    county: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None


def _find_owned(db, address_id: str, user_id: str) -> dict:
    oid = to_object_id(address_id)
    address = db["address"].find_one({"_id": oid, "user_id": user_id}) if oid else None
    if not address:
        raise HTTPException(404, "Address not found")
    return address


def _unset_other_defaults(db, user_id: str, keep_id=None, session=None):
    filt = {"user_id": user_id, "is_default": True}
    if keep_id is not None:
        filt["_id"] = {"$ne": keep_id}
    db["address"].update_many(filt, {"$set": {"is_default": False, "updated_at": utcnow()}}, **session_kwargs(session))


@router.get("")
def list_addresses(user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("Fetching addresses for user %s", user["id"])
    docs = db["address"].find({"user_id": user["id"]}).sort([("is_default", -1), ("created_at", -1)])
    return {"message": "Addresses fetched successfully", "data": [serialize(d) for d in docs]}


@router.get("/{address_id}")
def get_address(address_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("Fetching address %s for user %s", address_id, user["id"])
    return {"message": "Address fetched successfully", "data": serialize(_find_owned(db, address_id, user["id"]))}


@router.post("", status_code=201)
def create_address(body: CreateAddressPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("Creating new address for user %s", user["id"])
    data = body.model_dump(exclude_none=True)
    address = AddressSchema(user_id=user["id"], **data)
    try:
        with transaction(db) as session:
            if address.is_default:
                _unset_other_defaults(db, user["id"], session=session)
            new_id = create_document(db, "address", address, session=session)
    except PyMongoError:
        logger.exception("Address creation failed for user %s", user["id"])
        raise HTTPException(400, "Failed to create address")
    created = db["address"].find_one({"_id": to_object_id(new_id)})
    return {"message": "Address created successfully", "data": serialize(created)}


@router.put("/{address_id}")
def update_address(address_id: str, body: UpdateAddressPayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("Updating address %s for user %s", address_id, user["id"])
    existing = _find_owned(db, address_id, user["id"])
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    changes["updated_at"] = utcnow()
    try:
        with transaction(db) as session:
            if changes.get("is_default"):
                _unset_other_defaults(db, user["id"], keep_id=existing["_id"], session=session)
            db["address"].update_one({"_id": existing["_id"]}, {"$set": changes}, **session_kwargs(session))
    except PyMongoError:
        logger.exception("Address update failed for %s", address_id)
        raise HTTPException(400, "Failed to update address")
    updated = db["address"].find_one({"_id": existing["_id"]})
    return {"message": "Address updated successfully", "data": serialize(updated)}


@router.delete("/{address_id}")
def delete_address(address_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("Deleting address %s for user %s", address_id, user["id"])
    existing = _find_owned(db, address_id, user["id"])
    db["address"].delete_one({"_id": existing["_id"]})
    return {"message": "Address deleted successfully"}
