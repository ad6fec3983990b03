"""
Catalog: product listing and search, admin product CRUD, review upserts and
demo seeding.
"""
import logging
import re
from typing import Optional

from bson.objectid import ObjectId
from pymongo import ReturnDocument

from auth import UserPrincipal
from database import Database, paginate, to_object_id, utcnow
from errors import AuthorizationError, ConflictError, NotFoundError
from schemas import Product as ProductSchema

logger = logging.getLogger("storefront.catalog")

SORT_OPTIONS = {
    "price-asc": [("price", 1), ("_id", 1)],
    "price-desc": [("price", -1), ("_id", -1)],
    "rating-desc": [("rating.rate", -1), ("_id", -1)],
    "newest": [("created_at", -1), ("_id", -1)],
}

# fields an admin edit may not touch
PROTECTED_FIELDS = ("rating", "reviews", "source", "is_custom", "seller", "submission_id", "external_id")
REVIEW_WRITE_ATTEMPTS = 5


def find_product(db: Database, product_id: str, **options) -> Optional[dict]:
    """Look a product up by ObjectId, then by the id of the external catalog item it mirrors."""
    if ObjectId.is_valid(product_id):
        product = db["product"].find_one({"_id": ObjectId(product_id)}, **options)
        if product:
            return product
    return db["product"].find_one({"external_id": str(product_id)}, **options)


def get_product(db: Database, product_id: str) -> dict:
    product = find_product(db, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def list_products(db: Database, category: Optional[str] = None, search: Optional[str] = None,
                  sort: Optional[str] = None, page: int = 1, limit: int = 12) -> dict:
    filt = {}
    if category:
        filt["category"] = category
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    return paginate(db["product"], filt, page, limit, SORT_OPTIONS.get(sort or "newest", SORT_OPTIONS["newest"]))


def featured_products(db: Database, limit: int = 20):
    return list(db["product"].find({"is_featured": True, "source": "database"}).limit(limit))


def insert_product(db: Database, product: ProductSchema, **options) -> dict:
    doc = product.model_dump()
    if doc.get("seller"):
        doc["seller"] = ObjectId(doc["seller"])
    if doc.get("submission_id"):
        doc["submission_id"] = ObjectId(doc["submission_id"])
    now = utcnow()
    doc["created_at"] = now
    doc["updated_at"] = now
    doc["_id"] = db["product"].insert_one(doc, **options).inserted_id
    return doc


def create_product(db: Database, data: dict) -> dict:
    data = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS}
    product = ProductSchema(**data, source="database", is_custom=True)
    doc = insert_product(db, product)
    logger.info("Product %s created (%s)", doc["_id"], doc["title"])
    return doc


def update_product(db: Database, product_id: str, changes: dict) -> dict:
    existing = find_product(db, product_id)
    if not existing:
        raise NotFoundError("Product not found")
    if existing.get("source") != "database":
        raise AuthorizationError("Cannot update frontend product")
    changes = {k: v for k, v in changes.items() if k not in PROTECTED_FIELDS}
    merged = {k: v for k, v in existing.items() if k in ProductSchema.model_fields}
    merged.update(changes)
    for ref in ("seller", "submission_id"):
        if merged.get(ref) is not None:
            merged[ref] = str(merged[ref])
    validated = {k: v for k, v in ProductSchema(**merged).model_dump().items() if k in changes}
    validated["updated_at"] = utcnow()
    return db["product"].find_one_and_update(
        {"_id": existing["_id"]}, {"$set": validated}, return_document=ReturnDocument.AFTER
    )


def delete_product(db: Database, product_id: str) -> None:
    res = db["product"].delete_one({"_id": to_object_id(product_id, "Product"), "source": "database"})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found or cannot be deleted")


# ----------------------- Reviews -----------------------
def recompute_rating(reviews) -> dict:
    if not reviews:
        return {"rate": 0, "count": 0}
    return {"rate": sum(r["rating"] for r in reviews) / len(reviews), "count": len(reviews)}


def upsert_review(db: Database, principal: UserPrincipal, product_id: str, rating: float, comment: str = "",
                  snapshot: Optional[dict] = None) -> dict:
    """
    Store principal's review of a product, replacing any earlier review by the same user.

    An external catalog item has no product document until it is first
    reviewed; in that case snapshot supplies its descriptive fields and the
    product is created with source="frontend".
    """
    product = find_product(db, product_id)
    if not product:
        if not snapshot:
            raise NotFoundError("Product not found")
        product = insert_product(db, ProductSchema(
            **{k: v for k, v in snapshot.items() if k not in PROTECTED_FIELDS},
            source="frontend",
            is_custom=False,
            external_id=str(product_id),
        ))
        logger.info("Product %s created from external item %s", product["_id"], product_id)

    review = {"user": principal.id, "name": principal.name, "rating": rating, "comment": comment or ""}
    for _ in range(REVIEW_WRITE_ATTEMPTS):
        current = product.get("reviews")
        reviews = [r for r in current or [] if r.get("user") != principal.id] + [review]
        # only lands if nobody changed the reviews since they were read
        updated = db["product"].find_one_and_update(
            {"_id": product["_id"], "reviews": current},
            {"$set": {"reviews": reviews, "rating": recompute_rating(reviews), "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated
        product = find_product(db, str(product["_id"]))
        if not product:
            raise NotFoundError("Product not found")
    raise ConflictError("Product reviews changed too often, please retry")


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "title": "Wireless Earbuds",
        "description": "Noise cancelling earbuds with 30h battery life.",
        "price": 79.99,
        "category": "electronics",
        "image": "https://images.unsplash.com/photo-1518443248587-30bdc8f94f04",
        "stock": 40,
        "is_featured": True,
    },
    {
        "title": "Denim Jacket",
        "description": "Classic fit denim jacket.",
        "price": 59.5,
        "category": "fashion",
        "image": "https://images.unsplash.com/photo-1525966222134-fcfa99b8ae77",
        "stock": 25,
    },
    {
        "title": "Oak Side Table",
        "description": "Solid oak side table with drawer.",
        "price": 120,
        "category": "furniture",
        "image": "https://images.unsplash.com/photo-1503602642458-232111445657",
        "stock": 8,
        "is_featured": True,
    },
    {
        "title": "Organic Coffee Beans",
        "description": "1kg medium roast single origin beans.",
        "price": 18,
        "category": "grocery",
        "image": "https://images.unsplash.com/photo-1559056199-641a0ac8b55e",
        "stock": 100,
    },
    {
        "title": "Mechanical Keyboard",
        "description": "Hot-swappable RGB keyboard.",
        "price": 89,
        "category": "gaming",
        "image": "https://images.unsplash.com/photo-1516382799247-87df95d790b5",
        "stock": 30,
    },
    {
        "title": "Vitamin C Serum",
        "description": "Brightening face serum, 30ml.",
        "price": 24.99,
        "category": "beauty",
        "image": "https://images.unsplash.com/photo-1556228578-8c89e6adf883",
        "stock": 60,
    },
    {
        "title": "The Pragmatic Programmer",
        "description": "20th anniversary edition.",
        "price": 39.95,
        "category": "books",
        "image": "https://images.unsplash.com/photo-1512820790803-83ca734da794",
        "stock": 15,
    },
]


def seed_catalog(db: Database) -> dict:
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        insert_product(db, ProductSchema(**p))
    return {"seeded": True, "products": db["product"].count_documents({})}
