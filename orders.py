"""
Order placement, status transitions and order documents.

Prices are always taken from the product table: the unit price a client
sends along with a line is ignored. An order and its items are written in
one transaction, so a rejected request never leaves a partial order behind.
"""

import logging
import re
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, undefer

from models import (
    Cart,
    CartItem,
    Order,
    OrderDocument,
    OrderDocumentType,
    OrderItem,
    OrderStatus,
    Product,
    User,
    UserRole,
)
from schemas import DocumentIn, OrderLineIn

log = logging.getLogger(__name__)

# allowed moves; delivered and cancelled are terminal
TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

DOCUMENT_TYPES = {t.value for t in OrderDocumentType}


def _bad_request(detail: str):
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _order_not_found():
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")


def _normalize_lines(items: Optional[Iterable[Any]]):
    items = list(items or [])
    if not items:
        raise _bad_request("Cart is empty")
    try:
        parsed = [OrderLineIn.model_validate(item) for item in items]
    except ValidationError:
        raise _bad_request("Invalid order lines")
    lines = [(line.product_id, line.quantity) for line in parsed]
    if any(product_id <= 0 or quantity <= 0 for product_id, quantity in lines):
        raise _bad_request("Invalid order lines")
    return lines


def price_lines(db: Session, items: Optional[Iterable[Any]]):
    """Validate lines against active products and return (lines, total) with server prices."""
    lines = _normalize_lines(items)
    product_ids = list(dict.fromkeys(product_id for product_id, _ in lines))
    products = db.scalars(
        select(Product).where(Product.id.in_(product_ids), Product.is_active.is_(True))
    ).unique().all()
    by_id = {p.id: p for p in products}
    missing = [pid for pid in product_ids if pid not in by_id]
    if missing:
        log.warning("Order rejected, unavailable products: %s", missing)
        raise _bad_request(f"Invalid or unavailable products: {', '.join(str(pid) for pid in missing)}")

    priced = [(pid, quantity, Decimal(by_id[pid].price)) for pid, quantity in lines]
    total = sum((price * quantity for _, quantity, price in priced), Decimal("0"))
    return priced, total.quantize(Decimal("0.01"))


def _mask_checkout_data(data: Optional[dict]) -> Optional[dict]:
    if data is None:
        return None
    snapshot = dict(data)
    snapshot.pop("cardCvv", None)
    card_number = snapshot.get("cardNumber")
    if isinstance(card_number, str) and card_number:
        snapshot["cardNumber"] = re.sub(r"\D", "", card_number)[-4:]
    return snapshot


def _place(
    db: Session,
    user_id: int,
    items,
    order_status: OrderStatus,
    shipping_address: Optional[str],
    notes: Optional[str],
    checkout_data: Optional[dict] = None,
    clear_cart: bool = False,
) -> Order:
    priced, total = price_lines(db, items)
    try:
        order = Order(
            user_id=user_id,
            total=total,
            status=order_status,
            shipping_address=shipping_address,
            notes=notes,
            checkout_data=checkout_data,
        )
        order.items = [
            OrderItem(product_id=pid, quantity=quantity, unit_price=price)
            for pid, quantity, price in priced
        ]
        db.add(order)
        if clear_cart:
            cart_id = select(Cart.id).where(Cart.user_id == user_id).scalar_subquery()
            db.execute(
                delete(CartItem)
                .where(CartItem.cart_id == cart_id)
                .execution_options(synchronize_session=False)
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    log.info("Order %s created for user %s (%s, total %s)", order.id, user_id, order_status.value, total)
    return get_order(db, order.id)


def create_order(db: Session, user_id: int, items, shipping_address=None, notes=None) -> Order:
    return _place(db, user_id, items, OrderStatus.PROCESSING, shipping_address, notes, clear_cart=True)


def create_draft(db: Session, user_id: int, items, shipping_address=None, notes=None, checkout_data=None) -> Order:
    return _place(
        db, user_id, items, OrderStatus.PENDING, shipping_address, notes,
        checkout_data=_mask_checkout_data(checkout_data),
    )


def list_orders(db: Session, user_id: int) -> List[Order]:
    return db.scalars(
        select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    ).all()


def get_order(db: Session, order_id: int) -> Order:
    # expire so freshly written items and documents are reloaded
    db.expire_all()
    order = db.get(Order, order_id)
    if order is None:
        raise _order_not_found()
    return order


def get_visible_order(db: Session, user: User, order_id: int) -> Order:
    order = get_order(db, order_id)
    if user.role != UserRole.ADMIN and order.user_id != user.id:
        raise _order_not_found()
    return order


def _owned_order(db: Session, user_id: int, order_id: int) -> Order:
    order = db.scalar(select(Order).where(Order.id == order_id, Order.user_id == user_id))
    if order is None:
        raise _order_not_found()
    return order


def update_status(db: Session, user: User, order_id: int, new_status: OrderStatus) -> Order:
    order = get_visible_order(db, user, order_id)
    if user.role != UserRole.ADMIN and new_status != OrderStatus.CANCELLED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Customers can only cancel their orders")
    if order.status == new_status:
        return order
    if new_status not in TRANSITIONS[order.status]:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot move order from {order.status.value} to {new_status.value}",
        )
    previous = order.status
    order.status = new_status
    db.commit()
    log.info("Order %s moved from %s to %s by user %s", order_id, previous.value, new_status.value, user.id)
    return order


def save_documents(db: Session, user_id: int, order_id: int, documents: Optional[List[DocumentIn]]) -> List[OrderDocument]:
    if not documents:
        raise _bad_request("No documents to save")
    _owned_order(db, user_id, order_id)

    by_type = {}
    for doc in documents:
        if doc.type not in DOCUMENT_TYPES or not doc.file_name or not doc.data_base64:
            continue
        # last entry of a type wins
        by_type[doc.type] = OrderDocument(
            order_id=order_id,
            type=OrderDocumentType(doc.type),
            file_name=str(doc.file_name)[:160],
            mime_type=str(doc.mime_type)[:80] if doc.mime_type else "application/pdf",
            data_base64=str(doc.data_base64),
        )
    if not by_type:
        raise _bad_request("Invalid documents")

    try:
        db.execute(
            delete(OrderDocument).where(
                OrderDocument.order_id == order_id,
                OrderDocument.type.in_([OrderDocumentType(t) for t in by_type]),
            ).execution_options(synchronize_session=False)
        )
        db.add_all(by_type.values())
        db.commit()
    except Exception:
        db.rollback()
        raise
    log.info("Saved %s documents for order %s", sorted(by_type), order_id)
    return db.scalars(
        select(OrderDocument).where(OrderDocument.order_id == order_id).order_by(OrderDocument.id)
    ).all()


def get_document(db: Session, user_id: int, order_id: int, doc_type: str) -> OrderDocument:
    _owned_order(db, user_id, order_id)
    if doc_type not in DOCUMENT_TYPES:
        raise _bad_request("Invalid document type")
    document = db.scalar(
        select(OrderDocument)
        .options(undefer(OrderDocument.data_base64))
        .where(OrderDocument.order_id == order_id, OrderDocument.type == OrderDocumentType(doc_type))
    )
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document
