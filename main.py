import math
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import admin_user, bearer_token, create_session, current_user, drop_session, hash_password, verify_password
from checkout import OrderWorkflow
from database import db, get_db
from errors import NotFoundError, ProductNotFoundError, ShopError, ValidationError
from logging_config import configure_logging
from manage import setup_database
from notifier import EmailNotifier
from schemas import OrderStatus, PaymentStatus, Product, User
from settings import get_settings
from stores import CartStore, CatalogStore, OrderStore, UserStore

logger = structlog.get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if db is not None:
        setup_database(db)
    logger.info("Storefront API started", environment=settings.environment)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_origin],
    allow_credentials=settings.client_origin != "*",
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------
# Error handling
# -----------------
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = [
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(status_code=422, content={"message": "; ".join(problems) or "Invalid request"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", path=request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})

# -----------------
# Dependencies
# -----------------
_notifier: Optional[EmailNotifier] = None


def get_notifier() -> EmailNotifier:
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier(settings.resend_api_key, settings.mail_from)
    return _notifier


def get_workflow(database: Database = Depends(get_db), notifier: EmailNotifier = Depends(get_notifier)) -> OrderWorkflow:
    return OrderWorkflow(
        catalog=CatalogStore(database),
        carts=CartStore(database),
        orders=OrderStore(database),
        users=UserStore(database),
        notifier=notifier,
        restock_on_cancel=settings.restock_on_cancel,
    )


@app.get("/")
def root():
    return {"name": "Storefront API", "status": "ok"}

@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
            response["database_name"] = db.name if hasattr(db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response

# -----------------
# Auth
# -----------------
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    email: EmailStr
    password: str = Field(..., min_length=1)

class LoginPayload(BaseModel):
    email: EmailStr
    password: str

class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=80)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=1)


def _session_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": user["id"], "name": user["name"], "email": user["email"], "role": user.get("role", "user")}


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterPayload, database: Database = Depends(get_db)):
    users = UserStore(database)
    if users.get_by_email(payload.email):
        raise ValidationError("Email already exists")
    pwd_hash, salt = hash_password(payload.password)
    try:
        user = users.create(User(name=payload.name, email=payload.email, password_hash=pwd_hash, salt=salt, role="user"))
    except DuplicateKeyError:
        raise ValidationError("Email already exists")
    token = create_session(database, user["id"])
    return {"message": "User Registered Successfully", "token": token, "user": _session_user(user)}

@app.post("/api/auth/login")
def login(payload: LoginPayload, database: Database = Depends(get_db)):
    user = UserStore(database).get_by_email(payload.email)
    if not user or not verify_password(payload.password, user):
        raise ValidationError("Invalid credentials")
    if not user.get("is_active", True):
        raise ValidationError("Account disabled")
    token = create_session(database, user["id"])
    return {"message": "Login successful", "token": token, "user": _session_user(user)}

@app.post("/api/auth/logout")
def logout(authorization: Optional[str] = Header(None), database: Database = Depends(get_db)):
    token = bearer_token(authorization)
    if token:
        drop_session(database, token)
    return {"message": "Logged out"}

@app.get("/api/profile")
def get_profile(user=Depends(current_user), database: Database = Depends(get_db)):
    return {"user": UserStore(database).get(user["id"])}

@app.put("/api/profile")
def update_profile(payload: ProfileUpdate, user=Depends(current_user), database: Database = Depends(get_db)):
    users = UserStore(database)
    updates: Dict[str, Any] = {}
    if payload.name:
        updates["name"] = payload.name
    if payload.email:
        other = users.get_by_email(payload.email)
        if other and other["id"] != user["id"]:
            raise ValidationError("Email already exists")
        updates["email"] = payload.email.lower()
    if payload.password:
        updates["password_hash"], updates["salt"] = hash_password(payload.password)
    updated = users.update(user["id"], updates) if updates else users.get(user["id"])
    return {"message": "Profile updated", "user": updated}

# -----------------
# Catalog
# -----------------
class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    description: str = ""
    image: Optional[str] = None

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None
    image: Optional[str] = None


@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    database: Database = Depends(get_db),
):
    total, products = CatalogStore(database).list_products(category=category, search=search, sort=sort, page=page, limit=limit)
    return {"total": total, "page": page, "pages": math.ceil(total / limit), "products": products}

@app.get("/api/products/{product_id}")
def get_product(product_id: str, database: Database = Depends(get_db)):
    product = CatalogStore(database).get_product(product_id)
    if not product:
        raise ProductNotFoundError(product_id, "Product not found")
    return {"product": product}

@app.post("/api/products", status_code=201)
def create_product(payload: ProductIn, admin=Depends(admin_user), database: Database = Depends(get_db)):
    product = CatalogStore(database).create_product(Product(**payload.model_dump()))
    return {"message": "Product added", "product": product}

@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin=Depends(admin_user), database: Database = Depends(get_db)):
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise ValidationError("Nothing to update")
    product = CatalogStore(database).update_product(product_id, updates)
    if not product:
        raise ProductNotFoundError(product_id, "Product not found")
    return {"message": "Product updated", "product": product}

@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin=Depends(admin_user), database: Database = Depends(get_db)):
    if not CatalogStore(database).delete_product(product_id):
        raise ProductNotFoundError(product_id, "Product not found")
    return {"message": "Product deleted"}

# -----------------
# Cart
# -----------------
class AddToCartPayload(BaseModel):
    product_id: str
    quantity: int = 1

class UpdateCartPayload(BaseModel):
    product_id: str
    quantity: int


def _cart_view(database: Database, user_id: str) -> Dict[str, Any]:
    catalog = CatalogStore(database)
    lines = CartStore(database).get_cart(user_id)
    items: List[Dict[str, Any]] = []
    for line in lines:
        product = catalog.get_product(line["product_id"])
        items.append({
            "product_id": line["product_id"],
            "quantity": line["quantity"],
            "product": {
                "id": product["id"],
                "name": product.get("name"),
                "price": product.get("price"),
                "image": product.get("image"),
                "stock": product.get("stock"),
            } if product else None,
        })
    return {"user_id": user_id, "items": items}


@app.get("/api/cart")
def get_cart(user=Depends(current_user), database: Database = Depends(get_db)):
    cart = _cart_view(database, user["id"])
    return {"cart": cart, "total_items": sum(i["quantity"] for i in cart["items"])}

@app.post("/api/cart/add")
def add_to_cart(payload: AddToCartPayload, user=Depends(current_user), database: Database = Depends(get_db)):
    if not CatalogStore(database).get_product(payload.product_id):
        raise ProductNotFoundError(payload.product_id, "Product not found")
    CartStore(database).add_item(user["id"], payload.product_id, payload.quantity)
    return {"message": "Product added to cart", "cart": _cart_view(database, user["id"])}

@app.put("/api/cart/update")
def update_cart_item(payload: UpdateCartPayload, user=Depends(current_user), database: Database = Depends(get_db)):
    CartStore(database).set_quantity(user["id"], payload.product_id, payload.quantity)
    return {"message": "Cart updated", "cart": _cart_view(database, user["id"])}

@app.delete("/api/cart/item/{product_id}")
def remove_cart_item(product_id: str, user=Depends(current_user), database: Database = Depends(get_db)):
    CartStore(database).remove_item(user["id"], product_id)
    return {"message": "Item removed from cart", "cart": _cart_view(database, user["id"])}

@app.delete("/api/cart/clear")
def clear_cart(user=Depends(current_user), database: Database = Depends(get_db)):
    if CartStore(database).clear(user["id"]) is None:
        raise NotFoundError("Cart not found")
    return {"message": "Cart cleared", "cart": _cart_view(database, user["id"])}

# -----------------
# Checkout / Orders
# -----------------
class PlaceOrderPayload(BaseModel):
    address: Optional[str] = None
    payment_method: Optional[str] = None

class OrderStatusPayload(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    force: bool = False


@app.post("/api/orders", status_code=201)
def place_order(payload: PlaceOrderPayload, user=Depends(current_user), workflow: OrderWorkflow = Depends(get_workflow)):
    order = workflow.place_order(user["id"], payload.address, payload.payment_method)
    return {"message": "Order placed successfully", "order": order}

@app.get("/api/orders")
def my_orders(user=Depends(current_user), database: Database = Depends(get_db)):
    return {"orders": OrderStore(database).list_for_user(user["id"])}

@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(current_user), workflow: OrderWorkflow = Depends(get_workflow)):
    return {"order": workflow.get_order(order_id, user["id"], is_admin=user["role"] == "admin")}

@app.put("/api/orders/cancel/{order_id}")
def cancel_order(order_id: str, user=Depends(current_user), workflow: OrderWorkflow = Depends(get_workflow)):
    order = workflow.cancel_order(order_id, user["id"])
    return {"message": "Order cancelled successfully", "order": order}

# -----------------
# Admin
# -----------------
@app.get("/api/admin/orders")
def all_orders(admin=Depends(admin_user), database: Database = Depends(get_db)):
    orders = OrderStore(database).list_all()
    contacts = UserStore(database).contacts([o["user_id"] for o in orders])
    for order in orders:
        order["user"] = contacts.get(order["user_id"])
    return {"orders": orders}

@app.put("/api/admin/orders/{order_id}")
def update_order_status(order_id: str, payload: OrderStatusPayload, admin=Depends(admin_user), workflow: OrderWorkflow = Depends(get_workflow)):
    order = workflow.update_order_status(order_id, payload.status, payload.payment_status, force=payload.force)
    return {"message": "Order updated", "order": order}

@app.get("/api/admin/users")
def all_users(admin=Depends(admin_user), database: Database = Depends(get_db)):
    return {"users": UserStore(database).list_all()}

@app.put("/api/admin/users/{user_id}/toggle")
def toggle_user_status(user_id: str, admin=Depends(admin_user), database: Database = Depends(get_db)):
    users = UserStore(database)
    user = users.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    updated = users.update(user_id, {"is_active": not user.get("is_active", True)})
    return {"message": "Status changed", "user": updated}

@app.get("/api/admin/low-stock")
def low_stock(admin=Depends(admin_user), database: Database = Depends(get_db)):
    return {"low_stock": CatalogStore(database).low_stock(settings.low_stock_threshold)}


if __name__ == "__main__":
    import uvicorn
    port = settings.port
    uvicorn.run(app, host="0.0.0.0", port=port)
