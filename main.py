import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, ValidationError as SchemaValidationError
from pymongo.errors import PyMongoError

import accounts
import carts
import catalog
import orders
import submissions
from auth import (
    AdminPrincipal,
    Principal,
    UserPrincipal,
    get_database,
    get_principal,
    get_settings,
    require_admin,
    require_seller,
    require_user,
)
from database import Database, serialize_doc, serialize_value
from errors import AppError
from schemas import (
    CartItem,
    Category,
    OrderItemIn,
    OrderStatus,
    PaymentDetails,
    ProductSubmission,
    ShippingDetails,
    UserRole,
    WishlistItem,
)
from settings import Settings, configure_logging

logger = logging.getLogger("storefront.api")


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class BecomeSellerBody(BaseModel):
    store_name: str
    store_description: str = ""


class UserUpdateBody(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None


class ProductCreateBody(BaseModel):
    title: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0)
    category: Category
    image: str
    stock: int = Field(0, ge=0)
    is_featured: bool = False


class ProductUpdateBody(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    image: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    is_featured: Optional[bool] = None
    store_name: Optional[str] = None


class ProductSnapshot(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., ge=0)
    category: Category
    image: str
    stock: int = Field(100, ge=0)


class ReviewBody(BaseModel):
    rating: float = Field(..., ge=1, le=5)
    comment: str = ""
    product: Optional[ProductSnapshot] = None


class CartBody(BaseModel):
    items: List[CartItem]


class OrderCreateBody(BaseModel):
    items: List[OrderItemIn]
    shipping: ShippingDetails
    payment: PaymentDetails
    total_amount: float = Field(..., ge=0)


class ReturnBody(BaseModel):
    reason: Optional[str] = None


class StatusUpdateBody(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class FeedbackBody(BaseModel):
    feedback: Optional[str] = None


# ----------------------- Utils -----------------------
def ok(**payload):
    return {"success": True, **serialize_value(payload)}


FIELD_MESSAGES = {"email": "Please provide a valid email address"}


def validation_response(errors) -> JSONResponse:
    """400 envelope for schema failures, using the first field-specific message that applies."""
    message = "Validation error"
    for error in errors:
        field = error["loc"][-1] if error.get("loc") else None
        if field in FIELD_MESSAGES and error.get("type") != "missing":
            message = FIELD_MESSAGES[field]
            break
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "errors": jsonable_encoder(errors)},
    )


def get_uow(database: Database = Depends(get_database)):
    return database.unit_of_work()


# ----------------------- App -----------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    owns_database = app.state.database is None
    if owns_database:
        app.state.database = Database.connect(settings)
    database = app.state.database
    database.ensure_indexes()
    accounts.ensure_initial_admin(database, settings)
    yield
    if owns_database:
        database.close()


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.warning("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return validation_response(exc.errors())

    @app.exception_handler(SchemaValidationError)
    async def handle_schema_validation(request: Request, exc: SchemaValidationError):
        logger.warning("%s %s rejected by %s schema", request.method, request.url.path, exc.title)
        return validation_response(exc.errors(include_url=False, include_context=False, include_input=False))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = str(exc) if settings.is_development else "Internal server error"
        return JSONResponse(status_code=500, content={"success": False, "message": message})

    register_routes(app)
    return app


def register_routes(app: FastAPI):
    # ----------------------- Health -----------------------
    @app.get("/")
    def root():
        return {"message": "Storefront API running"}

    @app.get("/test")
    def test_database(database: Database = Depends(get_database), settings: Settings = Depends(get_settings)):
        response = {
            "backend": "running",
            "database": "unavailable",
            "database_name": settings.database_name,
            "collections": [],
        }
        try:
            response["collections"] = database.list_collection_names()[:10]
            response["database"] = "connected"
        except PyMongoError as e:
            logger.warning("Database probe failed: %s", e)
            response["database"] = f"error: {str(e)[:80]}"
        return response

    # ----------------------- Auth -----------------------
    @app.post("/api/auth/register", status_code=201)
    def register(body: RegisterBody, db=Depends(get_database), settings=Depends(get_settings)):
        return ok(**accounts.register_user(db, settings, body.name, body.email, body.password))

    @app.post("/api/auth/login")
    def login(body: LoginBody, db=Depends(get_database), settings=Depends(get_settings)):
        return ok(**accounts.login_user(db, settings, body.email, body.password))

    @app.get("/api/auth/profile")
    def profile(user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        return ok(user=accounts.get_profile(db, user))

    @app.post("/api/auth/become-seller")
    def become_seller(body: BecomeSellerBody, user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        return ok(message="You are now a seller", user=accounts.become_seller(db, user, body.store_name, body.store_description))

    # ----------------------- Admin -----------------------
    @app.post("/api/admin/login")
    def admin_login(body: LoginBody, db=Depends(get_database), settings=Depends(get_settings)):
        return ok(**accounts.login_admin(db, settings, body.email, body.password))

    @app.get("/api/admin/check")
    def admin_check(admin: AdminPrincipal = Depends(require_admin)):
        return ok(message="Admin authenticated", admin={"id": admin.id, "email": admin.email})

    @app.get("/api/admin/users")
    def admin_list_users(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                         admin=Depends(require_admin), db=Depends(get_database)):
        return ok(**accounts.list_users(db, page, limit))

    @app.get("/api/admin/users/{user_id}")
    def admin_get_user(user_id: str, admin=Depends(require_admin), db=Depends(get_database)):
        return ok(user=accounts.get_user(db, user_id))

    @app.put("/api/admin/users/{user_id}")
    def admin_update_user(user_id: str, body: UserUpdateBody, admin=Depends(require_admin), db=Depends(get_database)):
        return ok(user=accounts.update_user(db, user_id, body.name, body.email, body.role))

    @app.patch("/api/admin/users/{user_id}/toggle-status")
    def admin_toggle_user(user_id: str, admin=Depends(require_admin), db=Depends(get_database)):
        result = accounts.toggle_user_status(db, user_id)
        state = "activated" if result["is_active"] else "deactivated"
        return ok(message=f"User {state} successfully", user=result)

    @app.delete("/api/admin/users/{user_id}")
    def admin_delete_user(user_id: str, admin=Depends(require_admin), db=Depends(get_database)):
        accounts.delete_user(db, user_id)
        return ok(message="User deleted successfully")

    @app.post("/api/admin/seed")
    def seed(admin=Depends(require_admin), db=Depends(get_database)):
        return ok(**catalog.seed_catalog(db))

    # ----------------------- Products -----------------------
    @app.get("/api/products")
    def list_products(category: Optional[str] = None, search: Optional[str] = None, sort: Optional[str] = None,
                      page: int = Query(1, ge=1), limit: int = Query(12, ge=1, le=100), db=Depends(get_database)):
        result = catalog.list_products(db, category, search, sort, page, limit)
        result["items"] = [serialize_doc(p) for p in result["items"]]
        return ok(**result)

    @app.get("/api/products/featured")
    def featured_products(db=Depends(get_database)):
        return ok(items=[serialize_doc(p) for p in catalog.featured_products(db)])

    @app.get("/api/products/{product_id}")
    def get_product(product_id: str, db=Depends(get_database)):
        return ok(product=serialize_doc(catalog.get_product(db, product_id)))

    @app.post("/api/products", status_code=201)
    def create_product(body: ProductCreateBody, admin=Depends(require_admin), db=Depends(get_database)):
        return ok(product=serialize_doc(catalog.create_product(db, body.model_dump())))

    @app.put("/api/products/{product_id}")
    def update_product(product_id: str, body: ProductUpdateBody, admin=Depends(require_admin), db=Depends(get_database)):
        changes = body.model_dump(exclude_none=True)
        return ok(product=serialize_doc(catalog.update_product(db, product_id, changes)))

    @app.delete("/api/products/{product_id}")
    def delete_product(product_id: str, admin=Depends(require_admin), db=Depends(get_database)):
        catalog.delete_product(db, product_id)
        return ok(message="Product deleted successfully")

    @app.put("/api/products/{product_id}/reviews")
    def review_product(product_id: str, body: ReviewBody, user: UserPrincipal = Depends(require_user),
                       db=Depends(get_database)):
        snapshot = body.product.model_dump() if body.product else None
        product = catalog.upsert_review(db, user, product_id, body.rating, body.comment, snapshot)
        return ok(product=serialize_doc(product))

    # ----------------------- Cart & Wishlist -----------------------
    @app.get("/api/cart")
    def get_cart(user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        return ok(cart=serialize_doc(carts.get_cart(db, user)))

    @app.put("/api/cart")
    def update_cart(body: CartBody, user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        return ok(cart=serialize_doc(carts.update_cart(db, user, body.items)))

    @app.delete("/api/cart")
    def clear_cart(user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        carts.clear_cart(db, user.id)
        return ok(message="Cart cleared successfully")

    @app.get("/api/wishlist")
    def get_wishlist(user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        return ok(**carts.get_wishlist(db, user))

    @app.post("/api/wishlist")
    def add_to_wishlist(body: WishlistItem, user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        wishlist = carts.add_to_wishlist(db, user, body)
        return ok(message="Item added to wishlist", items=wishlist["items"])

    @app.delete("/api/wishlist/{product_id}")
    def remove_from_wishlist(product_id: str, user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        wishlist = carts.remove_from_wishlist(db, user, product_id)
        return ok(message="Item removed from wishlist", items=wishlist["items"])

    # ----------------------- Orders -----------------------
    # admin routes first so "/admin/..." never matches "/{order_id}"
    @app.get("/api/orders/admin/all")
    def admin_list_orders(status: Optional[OrderStatus] = None, user_id: Optional[str] = None,
                          page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                          admin=Depends(require_admin), db=Depends(get_database)):
        result = orders.list_all_orders(db, status, user_id, page, limit)
        result["items"] = [serialize_doc(o) for o in result["items"]]
        return ok(**result)

    @app.put("/api/orders/admin/{order_id}/status")
    def admin_update_status(order_id: str, body: StatusUpdateBody, admin=Depends(require_admin),
                            db=Depends(get_database), uow=Depends(get_uow)):
        order = orders.admin_update_status(db, uow, order_id, body.status, body.tracking_number)
        return ok(order=serialize_doc(order))

    @app.get("/api/orders/admin/stats")
    def admin_order_stats(admin=Depends(require_admin), db=Depends(get_database)):
        return ok(stats=orders.order_stats(db))

    @app.post("/api/orders", status_code=201)
    def place_order(body: OrderCreateBody, user: UserPrincipal = Depends(require_user),
                    db=Depends(get_database), uow=Depends(get_uow)):
        order = orders.place_order(db, uow, user, body.items, body.shipping, body.payment, body.total_amount)
        return ok(order=serialize_doc(order))

    @app.get("/api/orders")
    def my_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                  user: UserPrincipal = Depends(require_user), db=Depends(get_database)):
        result = orders.list_user_orders(db, user, page, limit)
        result["items"] = [serialize_doc(o) for o in result["items"]]
        return ok(**result)

    @app.get("/api/orders/{order_id}")
    def get_order(order_id: str, principal: Principal = Depends(get_principal), db=Depends(get_database)):
        return ok(order=serialize_doc(orders.get_order(db, principal, order_id)))

    @app.post("/api/orders/{order_id}/cancel")
    def cancel_order(order_id: str, principal: Principal = Depends(get_principal),
                     db=Depends(get_database), uow=Depends(get_uow)):
        return ok(order=serialize_doc(orders.cancel_order(db, uow, principal, order_id)))

    @app.post("/api/orders/{order_id}/return")
    def request_return(order_id: str, body: ReturnBody, principal: Principal = Depends(get_principal),
                       db=Depends(get_database)):
        return ok(order=serialize_doc(orders.request_return(db, principal, order_id, body.reason)))

    # ----------------------- Sellers -----------------------
    @app.get("/api/sellers/dashboard")
    def seller_dashboard(seller: UserPrincipal = Depends(require_seller), db=Depends(get_database)):
        return ok(stats=submissions.seller_dashboard(db, seller))

    @app.post("/api/sellers/products/submit", status_code=201)
    def submit_product(body: ProductSubmission, seller: UserPrincipal = Depends(require_seller),
                       db=Depends(get_database)):
        return ok(submission=serialize_doc(submissions.submit_product(db, seller, body)))

    @app.get("/api/sellers/products/submissions")
    def my_submissions(seller: UserPrincipal = Depends(require_seller), db=Depends(get_database)):
        return ok(submissions=[serialize_doc(s) for s in submissions.seller_submissions(db, seller)])

    # ----------------------- Moderation -----------------------
    @app.get("/api/admin/product-submissions")
    def admin_list_submissions(status: Optional[str] = "pending", admin=Depends(require_admin),
                               db=Depends(get_database)):
        items = [serialize_doc(s) for s in submissions.list_submissions(db, status)]
        return ok(submissions=items, count=len(items))

    @app.get("/api/admin/product-submissions/{submission_id}")
    def admin_get_submission(submission_id: str, admin=Depends(require_admin), db=Depends(get_database)):
        return ok(submission=serialize_doc(submissions.get_submission(db, submission_id)))

    @app.post("/api/admin/product-submissions/{submission_id}/approve")
    def approve_submission(submission_id: str, body: Optional[FeedbackBody] = None,
                           admin: AdminPrincipal = Depends(require_admin), db=Depends(get_database),
                           uow=Depends(get_uow)):
        feedback = body.feedback if body else None
        submission, product = submissions.approve_submission(db, uow, admin, submission_id, feedback)
        return ok(message="Product approved and published", submission=serialize_doc(submission),
                  product=serialize_doc(product))

    @app.post("/api/admin/product-submissions/{submission_id}/reject")
    def reject_submission(submission_id: str, body: Optional[FeedbackBody] = None,
                          admin: AdminPrincipal = Depends(require_admin), db=Depends(get_database)):
        feedback = body.feedback if body else None
        submission = submissions.reject_submission(db, admin, submission_id, feedback)
        return ok(message="Product submission rejected", submission=serialize_doc(submission))


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
