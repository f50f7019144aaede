import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from cart import CartService
from catalog import ProductCatalog, present_product
from checkout import CheckoutService
from config import Settings
from database import serialize_doc, utcnow
from errors import ShopError
from orders import OrderService, present_order
from payment import PaymentGateway, PaymentSimulator
from reporting import OrderReports
from schemas import (
    AddToCartRequest,
    Category,
    CheckoutRequest,
    LoginRequest,
    OrderStatus,
    OrderStatusUpdate,
    PaymentStatus,
    ProductCreate,
    ProductUpdate,
    RestockRequest,
    SignupRequest,
    UpdateCartItemRequest,
)
from security import AuthService, authorize, public_user

logger = logging.getLogger(__name__)

SortOrder = Literal["asc", "desc"]


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = serialize_doc(data)
    return body


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# --- Dependencies ---

bearer = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_auth(request: Request, db: Database = Depends(get_db)) -> AuthService:
    settings: Settings = request.app.state.settings
    return AuthService(db, settings.token_ttl_hours, settings.allow_admin_signup)


def current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
                 auth: AuthService = Depends(get_auth)) -> Dict[str, Any]:
    return auth.user_for_token(credentials.credentials if credentials else None)


def require(action: str):
    def dependency(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
        authorize(user, action)
        return user
    return dependency


def get_catalog(db: Database = Depends(get_db)) -> ProductCatalog:
    return ProductCatalog(db)


def get_carts(db: Database = Depends(get_db)) -> CartService:
    return CartService(db)


def get_orders(db: Database = Depends(get_db)) -> OrderService:
    return OrderService(db)


def get_reports(db: Database = Depends(get_db)) -> OrderReports:
    return OrderReports(db)


def get_checkout(request: Request, db: Database = Depends(get_db)) -> CheckoutService:
    return CheckoutService(db, request.app.state.payment_gateway)


# --- Routes ---

router = APIRouter()


@router.get("/")
def read_root():
    return {"message": "Ecommerce backend is running"}


@router.get("/health")
def health(db: Database = Depends(get_db)):
    response = {
        "status": "OK",
        "timestamp": utcnow().isoformat(),
        "database": db.name,
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        logger.warning("Health check could not list collections: %s", e)
        response["status"] = "DEGRADED"
    return response


# Auth

@router.post("/api/auth/signup", status_code=201)
def signup(payload: SignupRequest, auth: AuthService = Depends(get_auth)):
    user = auth.signup(payload)
    token = auth.issue_token(user)
    return ok({"user": public_user(user), "token": token}, "User registered successfully")


@router.post("/api/auth/login")
def login(payload: LoginRequest, auth: AuthService = Depends(get_auth)):
    user = auth.login(payload.email, payload.password)
    token = auth.issue_token(user)
    return ok({"user": public_user(user), "token": token}, "Login successful")


@router.get("/api/auth/profile")
def profile(user: Dict[str, Any] = Depends(current_user)):
    return ok({"user": public_user(user)})


# Products

@router.get("/api/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[Category] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    search: Optional[str] = Query(None, max_length=100),
    is_active: bool = Query(True, alias="isActive"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: SortOrder = Query("desc", alias="sortOrder"),
    catalog: ProductCatalog = Depends(get_catalog),
):
    products, pagination = catalog.list(
        page=page, limit=limit, category=category, min_price=min_price, max_price=max_price,
        search=search, is_active=is_active, sort_by=sort_by, sort_order=sort_order,
    )
    return ok({"products": [present_product(p) for p in products], "pagination": pagination})


@router.get("/api/products/category/{category}")
def list_products_by_category(
    category: Category,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    catalog: ProductCatalog = Depends(get_catalog),
):
    products, pagination = catalog.list_by_category(category, page, limit)
    return ok({
        "products": [present_product(p) for p in products],
        "category": category,
        "pagination": pagination,
    })


@router.get("/api/products/{product_id}")
def get_product(product_id: str, catalog: ProductCatalog = Depends(get_catalog)):
    return ok({"product": present_product(catalog.get(product_id))})


@router.post("/api/products", status_code=201)
def create_product(payload: ProductCreate, user: Dict[str, Any] = Depends(current_user),
                   catalog: ProductCatalog = Depends(get_catalog)):
    product = catalog.create(payload, user)
    return ok({"product": present_product(product)}, "Product created successfully")


@router.patch("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, user: Dict[str, Any] = Depends(current_user),
                   catalog: ProductCatalog = Depends(get_catalog)):
    product = catalog.update(product_id, payload, user)
    return ok({"product": present_product(product)}, "Product updated successfully")


@router.delete("/api/products/{product_id}")
def delete_product(product_id: str, user: Dict[str, Any] = Depends(current_user),
                   catalog: ProductCatalog = Depends(get_catalog)):
    catalog.soft_delete(product_id, user)
    return ok(message="Product deleted successfully")


@router.post("/api/products/{product_id}/restock")
def restock_product(product_id: str, payload: RestockRequest,
                    user: Dict[str, Any] = Depends(require("product:restock")),
                    catalog: ProductCatalog = Depends(get_catalog)):
    product = catalog.increment_stock(product_id, payload.quantity)
    return ok({"product": present_product(product)}, "Product restocked successfully")


# Cart

def _cart_body(carts: CartService, user_id: str) -> Dict[str, Any]:
    return {"cart": carts.present(carts.get_populated(user_id))}


@router.get("/api/cart")
def get_cart(user: Dict[str, Any] = Depends(require("cart:use")), carts: CartService = Depends(get_carts)):
    return ok(_cart_body(carts, str(user["_id"])))


@router.post("/api/cart/add")
def add_to_cart(payload: AddToCartRequest, user: Dict[str, Any] = Depends(require("cart:use")),
                carts: CartService = Depends(get_carts)):
    carts.add_item(str(user["_id"]), payload.product_id, payload.quantity)
    return ok(_cart_body(carts, str(user["_id"])), "Item added to cart successfully")


@router.patch("/api/cart/update/{product_id}")
def update_cart_item(product_id: str, payload: UpdateCartItemRequest,
                     user: Dict[str, Any] = Depends(require("cart:use")),
                     carts: CartService = Depends(get_carts)):
    carts.update_item_quantity(str(user["_id"]), product_id, payload.quantity)
    return ok(_cart_body(carts, str(user["_id"])), "Cart updated successfully")


@router.delete("/api/cart/remove/{product_id}")
def remove_from_cart(product_id: str, user: Dict[str, Any] = Depends(require("cart:use")),
                     carts: CartService = Depends(get_carts)):
    carts.remove_item(str(user["_id"]), product_id)
    return ok(_cart_body(carts, str(user["_id"])), "Item removed from cart successfully")


@router.delete("/api/cart/clear")
def clear_cart(user: Dict[str, Any] = Depends(require("cart:use")), carts: CartService = Depends(get_carts)):
    cart = carts.clear(str(user["_id"]))
    return ok({"cart": cart}, "Cart cleared successfully")


@router.get("/api/cart/count")
def cart_count(user: Dict[str, Any] = Depends(require("cart:use")), carts: CartService = Depends(get_carts)):
    return ok({"item_count": carts.item_count(str(user["_id"]))})


# Orders

@router.post("/api/orders/checkout", status_code=201)
def checkout(payload: CheckoutRequest, user: Dict[str, Any] = Depends(require("order:checkout")),
             service: CheckoutService = Depends(get_checkout)):
    result = service.checkout(user, payload.shipping_address, payload.payment_method, payload.notes)
    data = {
        "order": present_order(result.order),
        "payment": result.payment.model_dump(),
        "receipt": result.receipt,
    }
    if result.success:
        return ok(data, "Order created and payment processed successfully")
    body = ok(data, "Payment failed")
    body["success"] = False
    return JSONResponse(status_code=400, content=body)


@router.get("/api/orders")
def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    user: Dict[str, Any] = Depends(require("order:list_own")),
    orders: OrderService = Depends(get_orders),
):
    docs, pagination = orders.list_for_user(str(user["_id"]), page, limit, status)
    return ok({"orders": [present_order(o) for o in docs], "pagination": pagination})


@router.get("/api/orders/stats/summary")
def order_stats(user: Dict[str, Any] = Depends(require("order:stats")),
                reports: OrderReports = Depends(get_reports)):
    return ok(reports.summary())


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, user: Dict[str, Any] = Depends(current_user),
              orders: OrderService = Depends(get_orders)):
    return ok({"order": present_order(orders.get_for(order_id, user))})


@router.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate,
                        user: Dict[str, Any] = Depends(require("order:update_status")),
                        orders: OrderService = Depends(get_orders)):
    order = orders.update_status(order_id, payload.status, str(user["_id"]), payload.note, payload.tracking_number)
    return ok({"order": present_order(order)}, "Order status updated successfully")


# Admin

@router.get("/api/admin/orders")
def admin_list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: SortOrder = Query("desc", alias="sortOrder"),
    user: Dict[str, Any] = Depends(require("order:list_all")),
    orders: OrderService = Depends(get_orders),
    reports: OrderReports = Depends(get_reports),
):
    date_from, date_to = _naive_utc(date_from), _naive_utc(date_to)
    docs, pagination = orders.list_all(page, limit, status, payment_status, date_from, date_to, sort_by, sort_order)
    statistics = reports.status_statistics(orders.build_filter(None, payment_status, date_from, date_to))
    return ok({
        "orders": [present_order(o) for o in docs],
        "pagination": pagination,
        "statistics": statistics,
        "filters": {"status": status, "sort_by": sort_by, "sort_order": sort_order},
    })


@router.get("/api/admin/orders/statistics/overview")
def admin_statistics(user: Dict[str, Any] = Depends(require("order:stats")),
                     reports: OrderReports = Depends(get_reports)):
    return ok(reports.overview())


@router.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, user: Dict[str, Any] = Depends(require("order:list_all")),
                    orders: OrderService = Depends(get_orders), auth: AuthService = Depends(get_auth)):
    order = present_order(orders.get(order_id))
    order["customer"] = public_user(auth.get_user(order["user_id"]))
    return ok({"order": order})


@router.patch("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, payload: OrderStatusUpdate,
                              user: Dict[str, Any] = Depends(require("order:update_status")),
                              orders: OrderService = Depends(get_orders)):
    order = orders.update_status(order_id, payload.status, str(user["_id"]), payload.note, payload.tracking_number)
    return ok({"order": present_order(order)}, f"Order status updated to {payload.status}")


@router.delete("/api/admin/orders/{order_id}")
def admin_cancel_order(order_id: str, user: Dict[str, Any] = Depends(require("order:cancel")),
                       orders: OrderService = Depends(get_orders)):
    order = orders.cancel(order_id, str(user["_id"]))
    return ok({"order": present_order(order)}, "Order cancelled successfully")


# --- Error handlers ---

def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"field": _field_name(err.get("loc", ())), "message": err.get("msg", "Invalid value")}
              for err in exc.errors()]
    return JSONResponse(status_code=400, content={
        "success": False,
        "message": "Validation error",
        "reason": "validation_error",
        "errors": errors,
    })


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)},
                        headers=getattr(exc, "headers", None))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Server error"})


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None,
               payment_gateway: Optional[PaymentGateway] = None) -> FastAPI:
    """Build the API.

    Passing ``db`` skips opening a MongoClient in the lifespan; tests use
    this to hand in a mongomock database.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level,
                            format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        client = None
        if app.state.db is None:
            client, app.state.db = database.connect(settings.database_url, settings.database_name)
            database.ensure_indexes(app.state.db)
        try:
            yield
        finally:
            database.close(client)

    app = FastAPI(title="Ecommerce API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    if db is not None:
        database.ensure_indexes(db)
    app.state.payment_gateway = payment_gateway or PaymentSimulator(
        success_rate=settings.payment_success_rate,
        min_delay=settings.payment_min_delay,
        max_delay=settings.payment_max_delay,
        timeout=settings.payment_timeout,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", app.state.settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
