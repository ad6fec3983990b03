"""
Seller product submissions and their moderation.

A submission starts "pending" and an admin moves it once, to "approved"
(which publishes a catalog product) or to "rejected" (feedback required).
Both outcomes are terminal.
"""
import logging
from typing import Optional

from bson.objectid import ObjectId
from pymongo import ReturnDocument

from auth import AdminPrincipal, UserPrincipal
from catalog import insert_product
from database import Database, to_object_id, utcnow
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import Product as ProductSchema, ProductSubmission
from unit_of_work import UnitOfWork

logger = logging.getLogger("storefront.submissions")

DEFAULT_APPROVAL_FEEDBACK = "Your product has been approved and is now listed on the store."
SELLER_FIELDS = {"name": 1, "email": 1, "store_name": 1}


def _populate_sellers(db: Database, submissions):
    ids = list({s["seller"] for s in submissions})
    sellers = {u["_id"]: u for u in db["user"].find({"_id": {"$in": ids}}, SELLER_FIELDS)}
    for submission in submissions:
        seller = sellers.get(submission["seller"])
        submission["seller"] = {
            "id": submission["seller"],
            "name": seller.get("name"),
            "email": seller.get("email"),
            "store_name": seller.get("store_name"),
        } if seller else {"id": submission["seller"]}
    return submissions


def _load(db: Database, submission_id: str) -> dict:
    submission = db["product_submission"].find_one({"_id": to_object_id(submission_id, "Submission")})
    if not submission:
        raise NotFoundError("Submission not found")
    return submission


def _ensure_pending(submission: dict, target: str):
    status = submission["status"]
    if status == target:
        raise ConflictError(f"This submission is already {target}")
    if status != "pending":
        raise ConflictError(f"This submission has already been {status}")


# ----------------------- Seller side -----------------------
def submit_product(db: Database, principal: UserPrincipal, data: ProductSubmission) -> dict:
    if principal.kind != "user" or principal.role != "seller":
        raise AuthorizationError("Only sellers can submit products")
    doc = data.model_dump()
    doc.update({
        "seller": ObjectId(principal.id),
        "status": "pending",
        "admin_feedback": "",
        "product_id": None,
    })
    doc["created_at"] = doc["updated_at"] = utcnow()
    doc["_id"] = db["product_submission"].insert_one(doc).inserted_id
    logger.info("Submission %s created by seller %s", doc["_id"], principal.id)
    return doc


def seller_submissions(db: Database, principal: UserPrincipal):
    return list(db["product_submission"].find({"seller": ObjectId(principal.id)}).sort([("created_at", -1), ("_id", -1)]))


def seller_dashboard(db: Database, principal: UserPrincipal) -> dict:
    seller = ObjectId(principal.id)
    counts = {status: 0 for status in ("pending", "approved", "rejected")}
    for row in db["product_submission"].aggregate([
        {"$match": {"seller": seller}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
    ]):
        counts[row["_id"]] = row["count"]
    return {
        "pending_submissions": counts["pending"],
        "approved_submissions": counts["approved"],
        "rejected_submissions": counts["rejected"],
        "active_products": db["product"].count_documents({"seller": seller}),
    }


# ----------------------- Admin side -----------------------
def list_submissions(db: Database, status: Optional[str] = "pending"):
    query = {"status": status} if status else {}
    submissions = list(db["product_submission"].find(query).sort([("created_at", -1), ("_id", -1)]))
    return _populate_sellers(db, submissions)


def get_submission(db: Database, submission_id: str) -> dict:
    return _populate_sellers(db, [_load(db, submission_id)])[0]


def approve_submission(db: Database, uow: UnitOfWork, principal: AdminPrincipal, submission_id: str,
                       feedback: Optional[str] = None):
    submission = _load(db, submission_id)
    _ensure_pending(submission, "approved")

    seller = db["user"].find_one({"_id": submission["seller"]})
    if not seller:
        raise NotFoundError("Seller not found")

    with uow:
        product = insert_product(db, ProductSchema(
            title=submission["title"],
            description=submission["description"],
            price=submission["price"],
            category=submission["category"],
            image=submission["image"],
            stock=submission["stock"],
            seller=str(submission["seller"]),
            store_name=seller.get("store_name") or seller["name"],
            is_featured=False,
            is_custom=True,
            source="database",
            submission_id=str(submission["_id"]),
        ), **uow.options)
        uow.on_rollback(db["product"].delete_one, {"_id": product["_id"]})

        updated = db["product_submission"].find_one_and_update(
            {"_id": submission["_id"], "status": "pending"},
            {"$set": {
                "status": "approved",
                "admin_feedback": feedback or DEFAULT_APPROVAL_FEEDBACK,
                "product_id": product["_id"],
                "updated_at": utcnow(),
            }},
            return_document=ReturnDocument.AFTER,
            **uow.options,
        )
        if updated is None:
            raise ConflictError("This submission is no longer pending")

    logger.info("Submission %s approved by admin %s as product %s", submission_id, principal.id, product["_id"])
    return updated, product


def reject_submission(db: Database, principal: AdminPrincipal, submission_id: str, feedback: Optional[str]) -> dict:
    if not feedback or not feedback.strip():
        raise ValidationError("Feedback is required when rejecting a submission")
    submission = _load(db, submission_id)
    _ensure_pending(submission, "rejected")

    updated = db["product_submission"].find_one_and_update(
        {"_id": submission["_id"], "status": "pending"},
        {"$set": {"status": "rejected", "admin_feedback": feedback.strip(), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("This submission is no longer pending")
    logger.info("Submission %s rejected by admin %s", submission_id, principal.id)
    return updated
