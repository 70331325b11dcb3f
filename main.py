import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

import accounts
import admin
import cart
import catalog
import config
import orders
from database import SessionLocal, get_db, init_db
from logs import setup_logging, sync_log_files
from models import User
from schemas import (
    AdminUserOut,
    AuthResponse,
    CartItemAdd,
    CartItemUpdate,
    CartOut,
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    DocumentsSave,
    DraftOrderCreate,
    LoginRequest,
    LogFileOut,
    OrderCreate,
    OrderDocumentContent,
    OrderDocumentOut,
    OrderOut,
    OrderStatusUpdate,
    PasswordChange,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    ProfileOut,
    ProfileUpdate,
    RegisterRequest,
    SuccessResponse,
)
from security import get_current_admin, get_current_user

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if not config.IS_PRODUCTION:
        init_db()
    with SessionLocal() as db:
        if config.ADMIN_EMAIL and config.ADMIN_PASSWORD:
            accounts.ensure_admin(db, config.ADMIN_EMAIL, config.ADMIN_PASSWORD)
            log.info("Admin account %s ensured", config.ADMIN_EMAIL)
        sync_log_files(db)
    log.info("Storefront API ready (env=%s)", config.APP_ENV)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root():
    return {"name": "Storefront API", "status": "ok"}


@app.get("/test")
def test_database(db: Session = Depends(get_db)):
    info = {"backend": "running", "database": "disconnected"}
    try:
        db.execute(text("SELECT 1"))
        info["database"] = "connected"
    except Exception as e:
        log.exception("Database probe failed")
        info["error"] = str(e)[:80]
    return info


# ---------- Auth ----------

@app.post("/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    return accounts.register(db, body)


@app.post("/auth/login", response_model=AuthResponse)
def login(body: LoginRequest, db: Session = Depends(get_db)):
    return accounts.login(db, body)


@app.get("/auth/me", response_model=ProfileOut)
def me(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return accounts.get_me(db, current)


@app.patch("/auth/me", response_model=ProfileOut)
def update_me(body: ProfileUpdate, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return accounts.update_profile(db, current, body)


@app.patch("/auth/me/password", response_model=SuccessResponse)
def change_password(body: PasswordChange, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return accounts.change_password(db, current, body)


# ---------- Cart ----------

@app.get("/cart", response_model=CartOut)
def get_cart(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart.get_cart(db, current.id)


@app.post("/cart/items", response_model=CartOut)
def add_cart_item(body: CartItemAdd, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart.add_item(db, current.id, body.product_id, body.quantity)


@app.put("/cart/items/{product_id}", response_model=CartOut)
def update_cart_item(
    product_id: int,
    body: CartItemUpdate,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return cart.update_item(db, current.id, product_id, body.quantity)


@app.delete("/cart/items/{product_id}", response_model=CartOut)
def remove_cart_item(product_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart.remove_item(db, current.id, product_id)


@app.delete("/cart", response_model=CartOut)
def clear_cart(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart.clear_cart(db, current.id)


# ---------- Products ----------

@app.get("/products", response_model=List[ProductOut])
def list_products(
    category_id: Optional[int] = Query(None, alias="categoryId"),
    featured: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    return catalog.list_products(db, category_id, featured)


@app.get("/products/slug/{slug}", response_model=ProductOut)
def get_product_by_slug(slug: str, db: Session = Depends(get_db)):
    return catalog.get_product_by_slug(db, slug)


@app.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.post("/products", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(body: ProductCreate, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return catalog.create_product(db, body)


@app.put("/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int,
    body: ProductUpdate,
    _: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return catalog.update_product(db, product_id, body)


@app.delete("/products/{product_id}", response_model=ProductOut)
def delete_product(product_id: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return catalog.remove_product(db, product_id)


# ---------- Categories ----------

@app.get("/categories", response_model=List[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return catalog.list_categories(db)


@app.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    return catalog.category_out(catalog.get_category(db, category_id))


@app.post("/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(body: CategoryCreate, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return catalog.category_out(catalog.create_category(db, body))


@app.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    body: CategoryUpdate,
    _: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return catalog.category_out(catalog.update_category(db, category_id, body))


@app.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    catalog.remove_category(db, category_id)


# ---------- Orders ----------

@app.get("/orders", response_model=List[OrderOut])
def list_my_orders(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return orders.list_orders(db, current.id)


@app.post("/orders", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(body: OrderCreate, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return orders.create_order(db, current.id, body.items, body.shipping_address, body.notes)


@app.post("/orders/draft", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
def create_draft_order(body: DraftOrderCreate, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return orders.create_draft(db, current.id, body.items, body.shipping_address, body.notes, body.checkout_data)


@app.get("/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return orders.get_visible_order(db, current, order_id)


@app.put("/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return orders.update_status(db, current, order_id, body.status)


@app.post("/orders/{order_id}/documents", response_model=List[OrderDocumentOut])
def save_order_documents(
    order_id: int,
    body: DocumentsSave,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return orders.save_documents(db, current.id, order_id, body.documents)


@app.get("/orders/{order_id}/documents/{doc_type}", response_model=OrderDocumentContent)
def get_order_document(
    order_id: int,
    doc_type: str,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return orders.get_document(db, current.id, order_id, doc_type)


# ---------- Admin ----------

@app.get("/admin/users", response_model=List[AdminUserOut])
def admin_users(_: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return admin.list_users_with_stats(db)


@app.get("/admin/users/{user_id}/orders", response_model=List[OrderOut])
def admin_user_orders(user_id: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return admin.list_user_orders(db, user_id)


@app.get("/admin/logs", response_model=List[LogFileOut])
def admin_logs(_: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return admin.list_log_files(db)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
