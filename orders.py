"""
Order lifecycle

    pending -> processing -> shipped -> delivered -> return-requested
    pending | processing -> cancelled

Every order that is not cancelled holds its line items' stock. Placing an
order reserves stock, cancelling releases it, and an admin-forced status
change into or out of "cancelled" does the same. Multi-document steps run
inside the UnitOfWork passed in by the caller, so a failure part way
through leaves neither stock nor orders changed.
"""
import logging
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional

from bson.objectid import ObjectId
from pymongo import ReturnDocument

from auth import Principal, UserPrincipal
from carts import clear_cart, restore_cart
from catalog import find_product
from database import Database, paginate, to_object_id, utcnow
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import ORDER_STATUSES, Order, OrderItem, OrderItemIn, PaymentDetails, ShippingDetails
from unit_of_work import UnitOfWork

logger = logging.getLogger("storefront.orders")

CANCELLABLE = ["pending", "processing"]
RETURNABLE = "delivered"
STATS_WINDOW_DAYS = 7


# ----------------------- Stock -----------------------
def reserve_stock(db: Database, uow: UnitOfWork, product_id: str, quantity: int) -> dict:
    """Take quantity units of a product, or fail without touching it."""
    product = find_product(db, product_id, **uow.options)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    updated = db["product"].find_one_and_update(
        {"_id": product["_id"], "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}},
        return_document=ReturnDocument.AFTER,
        **uow.options,
    )
    if updated is None:
        raise ConflictError(f"Product {product['title']} is out of stock")
    uow.on_rollback(db["product"].update_one, {"_id": product["_id"]}, {"$inc": {"stock": quantity}})
    return updated


def release_stock(db: Database, uow: UnitOfWork, items: List[dict]) -> None:
    for item in items:
        pid = item.get("product_id")
        if not ObjectId.is_valid(pid):
            logger.warning("Skipping stock release for unknown product %s", pid)
            continue
        res = db["product"].update_one({"_id": ObjectId(pid)}, {"$inc": {"stock": item["quantity"]}}, **uow.options)
        if res.matched_count == 0:
            # product was removed from the catalog since the order was placed
            logger.warning("Skipping stock release for missing product %s", pid)
            continue
        uow.on_rollback(db["product"].update_one, {"_id": ObjectId(pid)}, {"$inc": {"stock": -item["quantity"]}})


# ----------------------- Helpers -----------------------
def _load_order(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order")})
    if not order:
        raise NotFoundError("Order not found")
    return order


def _is_owner(order: dict, principal: Principal) -> bool:
    return principal.kind == "user" and str(order["user_id"]) == principal.id


def _set_status(db: Database, uow: UnitOfWork, order: dict, expected, changes: dict) -> Optional[dict]:
    """Conditionally update an order whose status still matches expected, registering the undo."""
    expected = {"$in": expected} if isinstance(expected, list) else expected
    changes = {**changes, "updated_at": utcnow()}
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": expected},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
        **uow.options,
    )
    if updated is None:
        return None
    uow.on_rollback(db["order"].update_one, {"_id": order["_id"]}, {"$set": {k: order.get(k) for k in changes}})
    return updated


# ----------------------- Operations -----------------------
def place_order(db: Database, uow: UnitOfWork, principal: UserPrincipal, items: List[OrderItemIn],
                shipping: ShippingDetails, payment: PaymentDetails, total_amount: float) -> dict:
    if not items:
        raise ValidationError("No order items")

    with uow:
        line_items = []
        for item in items:
            product = reserve_stock(db, uow, item.product_id, item.quantity)
            line_items.append(OrderItem(
                product_id=str(product["_id"]),
                title=product["title"],
                price=product["price"],
                quantity=item.quantity,
                image=product.get("image"),
            ))

        order = Order(
            user_id=principal.id,
            items=line_items,
            shipping=shipping,
            payment=payment.masked(),
            total_amount=total_amount,
        )
        doc = order.model_dump()
        doc["user_id"] = ObjectId(principal.id)
        doc["created_at"] = doc["updated_at"] = utcnow()
        doc["_id"] = db["order"].insert_one(doc, **uow.options).inserted_id
        uow.on_rollback(db["order"].delete_one, {"_id": doc["_id"]})

        previous_cart = clear_cart(db, principal.id, **uow.options)
        if previous_cart:
            uow.on_rollback(restore_cart, db, previous_cart)

    logger.info("Order %s placed by user %s (%d items)", doc["_id"], principal.id, len(line_items))
    return doc


def get_order(db: Database, principal: Principal, order_id: str) -> dict:
    order = _load_order(db, order_id)
    if not (principal.is_admin or _is_owner(order, principal)):
        raise AuthorizationError("Not authorized to access this order")
    return order


def list_user_orders(db: Database, principal: UserPrincipal, page: int = 1, limit: int = 10) -> dict:
    return paginate(db["order"], {"user_id": ObjectId(principal.id)}, page, limit)


def list_all_orders(db: Database, status: Optional[str] = None, user_id: Optional[str] = None,
                    page: int = 1, limit: int = 10) -> dict:
    filt = {}
    if status:
        filt["status"] = status
    if user_id:
        filt["user_id"] = to_object_id(user_id, "User")
    result = paginate(db["order"], filt, page, limit)

    user_ids = list({o["user_id"] for o in result["items"]})
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})}
    for order in result["items"]:
        user = users.get(order["user_id"])
        order["user"] = {"id": order["user_id"], "name": user.get("name"), "email": user.get("email")} if user else None
    return result


def cancel_order(db: Database, uow: UnitOfWork, principal: Principal, order_id: str) -> dict:
    order = _load_order(db, order_id)
    if not (principal.is_admin or _is_owner(order, principal)):
        raise AuthorizationError("Not authorized to cancel this order")
    if order["status"] not in CANCELLABLE:
        raise ConflictError("Order cannot be cancelled")

    with uow:
        updated = _set_status(db, uow, order, CANCELLABLE, {"status": "cancelled"})
        if updated is None:
            raise ConflictError("Order cannot be cancelled")
        release_stock(db, uow, order["items"])

    logger.info("Order %s cancelled by %s %s", order_id, principal.kind, principal.id)
    return updated


def request_return(db: Database, principal: Principal, order_id: str, reason: Optional[str]) -> dict:
    order = _load_order(db, order_id)
    if not _is_owner(order, principal):
        raise AuthorizationError("Not authorized to return this order")
    if not reason or not reason.strip():
        raise ValidationError("Please provide a reason for return")
    if order["status"] != RETURNABLE:
        raise ConflictError("Only delivered orders can be returned")

    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": RETURNABLE},
        {"$set": {"status": "return-requested", "return_reason": reason.strip(), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Only delivered orders can be returned")
    logger.info("Return requested for order %s", order_id)
    return updated


def admin_update_status(db: Database, uow: UnitOfWork, order_id: str, status: str,
                        tracking_number: Optional[str] = None) -> dict:
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status. Valid statuses are: {', '.join(ORDER_STATUSES)}")
    order = _load_order(db, order_id)
    previous = order["status"]

    changes = {"status": status}
    if status == "delivered":
        changes["delivered_at"] = utcnow()
    if tracking_number:
        changes["tracking_number"] = tracking_number

    with uow:
        updated = _set_status(db, uow, order, previous, changes)
        if updated is None:
            raise ConflictError("Order was modified by another request, please retry")
        if status == "cancelled" and previous != "cancelled":
            release_stock(db, uow, order["items"])
        elif previous == "cancelled" and status != "cancelled":
            for item in order["items"]:
                reserve_stock(db, uow, item["product_id"], item["quantity"])

    logger.info("Order %s status forced %s -> %s", order_id, previous, status)
    return updated


def order_stats(db: Database, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    status_counts = [
        {"status": row["_id"], "count": row["count"], "revenue": row["revenue"]}
        for row in db["order"].aggregate([
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "revenue": {"$sum": "$total_amount"}}},
            {"$sort": {"_id": 1}},
        ])
    ]

    totals = list(db["order"].aggregate([
        {"$match": {"status": {"$ne": "cancelled"}}},
        {"$group": {"_id": None, "total_revenue": {"$sum": "$total_amount"}, "count": {"$sum": 1}}},
    ]))
    revenue_stats = {"total_revenue": totals[0]["total_revenue"], "count": totals[0]["count"]} if totals \
        else {"total_revenue": 0, "count": 0}

    today = now.astimezone(timezone.utc).date()
    first_day = today - timedelta(days=STATS_WINDOW_DAYS - 1)
    days = {(first_day + timedelta(days=n)).isoformat(): {"revenue": 0, "count": 0} for n in range(STATS_WINDOW_DAYS)}
    # ObjectIds carry their creation time, which keeps the window query on the _id index
    since = ObjectId.from_datetime(datetime.combine(first_day, time.min, tzinfo=timezone.utc))
    for order in db["order"].find({"_id": {"$gte": since}}, {"created_at": 1, "total_amount": 1}):
        created = order.get("created_at") or order["_id"].generation_time
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        bucket = days.get(created.astimezone(timezone.utc).date().isoformat())
        if bucket is not None:
            bucket["revenue"] += order.get("total_amount", 0)
            bucket["count"] += 1

    return {
        "status_counts": status_counts,
        "revenue_stats": revenue_stats,
        "daily_revenue": [{"date": day, **values} for day, values in days.items()],
    }
