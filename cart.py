import logging
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Cart, CartItem, Product
from schemas import CartItemOut, CartOut, ProductOut

log = logging.getLogger(__name__)


def get_or_create_cart(db: Session, user_id: int) -> Cart:
    cart = db.scalar(select(Cart).where(Cart.user_id == user_id))
    if cart is None:
        cart = Cart(user_id=user_id)
        db.add(cart)
        try:
            db.commit()
        except IntegrityError:
            # another request created it first
            db.rollback()
            cart = db.scalar(select(Cart).where(Cart.user_id == user_id))
    return cart


def cart_out(db: Session, cart: Cart) -> CartOut:
    # bulk statements bypass the identity map
    db.expire_all()
    total = Decimal("0")
    items = []
    for item in cart.items:
        # lines of deactivated products stay visible but are not charged
        if item.product is not None and item.product.is_active:
            total += item.product.price * item.quantity
        items.append(CartItemOut(
            id=item.id,
            product_id=item.product_id,
            quantity=item.quantity,
            product=ProductOut.model_validate(item.product) if item.product is not None else None,
        ))
    return CartOut(id=cart.id, user_id=cart.user_id, items=items, total=float(total))


def get_cart(db: Session, user_id: int) -> CartOut:
    return cart_out(db, get_or_create_cart(db, user_id))


def _increment(db: Session, cart_id: int, product_id: int, quantity: int) -> int:
    result = db.execute(
        update(CartItem)
        .where(CartItem.cart_id == cart_id, CartItem.product_id == product_id)
        .values(quantity=CartItem.quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def add_item(db: Session, user_id: int, product_id: int, quantity: int = 1) -> CartOut:
    if quantity < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Quantity must be at least 1")
    product = db.scalar(select(Product).where(Product.id == product_id, Product.is_active.is_(True)))
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    cart = get_or_create_cart(db, user_id)
    # quantity = quantity + n in one statement so concurrent adds cannot lose an update
    if not _increment(db, cart.id, product_id, quantity):
        db.add(CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity))
    try:
        db.commit()
    except IntegrityError:
        # a concurrent add inserted the line first
        db.rollback()
        _increment(db, cart.id, product_id, quantity)
        db.commit()
    return cart_out(db, cart)


def update_item(db: Session, user_id: int, product_id: int, quantity: int) -> CartOut:
    cart = get_or_create_cart(db, user_id)
    item = db.scalar(select(CartItem).where(CartItem.cart_id == cart.id, CartItem.product_id == product_id))
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not in cart")
    if quantity <= 0:
        db.delete(item)
    else:
        item.quantity = quantity
    db.commit()
    return cart_out(db, cart)


def remove_item(db: Session, user_id: int, product_id: int) -> CartOut:
    cart = get_or_create_cart(db, user_id)
    db.execute(
        delete(CartItem)
        .where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return cart_out(db, cart)


def clear_cart(db: Session, user_id: int) -> CartOut:
    cart = get_or_create_cart(db, user_id)
    db.execute(delete(CartItem).where(CartItem.cart_id == cart.id).execution_options(synchronize_session=False))
    db.commit()
    return cart_out(db, cart)
