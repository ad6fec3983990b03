"""
Per-user cart and wishlist documents, one of each per user.
"""
import logging
from typing import List

from bson.objectid import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import UserPrincipal
from database import Database, utcnow
from errors import ConflictError, NotFoundError
from schemas import CartItem, WishlistItem

logger = logging.getLogger("storefront.carts")


# ----------------------- Cart -----------------------
def get_cart(db: Database, principal: UserPrincipal) -> dict:
    cart = db["cart"].find_one({"user_id": ObjectId(principal.id)})
    return cart or {"user_id": principal.id, "items": [], "total_price": 0}


def update_cart(db: Database, principal: UserPrincipal, items: List[CartItem]) -> dict:
    docs = [item.model_dump() for item in items]
    total = round(sum(i["price"] * i["quantity"] for i in docs), 2)
    now = utcnow()
    return db["cart"].find_one_and_update(
        {"user_id": ObjectId(principal.id)},
        {"$set": {"items": docs, "total_price": total, "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def clear_cart(db: Database, user_id, **options):
    """Empty a user's cart and return the previous document, if any."""
    return db["cart"].find_one_and_update(
        {"user_id": ObjectId(user_id)},
        {"$set": {"items": [], "total_price": 0, "updated_at": utcnow()}},
        **options,
    )


def restore_cart(db: Database, previous: dict):
    db["cart"].update_one(
        {"_id": previous["_id"]},
        {"$set": {"items": previous.get("items", []), "total_price": previous.get("total_price", 0)}},
    )


# ----------------------- Wishlist -----------------------
def get_wishlist(db: Database, principal: UserPrincipal) -> dict:
    wishlist = db["wishlist"].find_one({"user_id": ObjectId(principal.id)})
    return {"items": wishlist.get("items", []) if wishlist else []}


def add_to_wishlist(db: Database, principal: UserPrincipal, item: WishlistItem) -> dict:
    uid = ObjectId(principal.id)
    for _ in range(2):
        now = utcnow()
        wishlist = db["wishlist"].find_one_and_update(
            {"user_id": uid, "items.product_id": {"$ne": item.product_id}},
            {"$push": {"items": item.model_dump()}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if wishlist:
            return wishlist
        if db["wishlist"].find_one({"user_id": uid}):
            raise ConflictError("Item already in wishlist")
        doc = {"user_id": uid, "items": [item.model_dump()], "created_at": now, "updated_at": now}
        try:
            doc["_id"] = db["wishlist"].insert_one(doc).inserted_id
            return doc
        except DuplicateKeyError:
            # a concurrent first add created the wishlist; push onto that one
            logger.info("Wishlist for user %s created concurrently, retrying add", principal.id)
    raise ConflictError("Item already in wishlist")


def remove_from_wishlist(db: Database, principal: UserPrincipal, product_id: str) -> dict:
    wishlist = db["wishlist"].find_one_and_update(
        {"user_id": ObjectId(principal.id)},
        {"$pull": {"items": {"product_id": product_id}}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not wishlist:
        raise NotFoundError("Wishlist not found")
    return wishlist
