import logging
import re

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from models import PaymentMethod, PaymentMethodType, ShippingProfile, User, UserRole
from schemas import (
    AuthResponse,
    LoginRequest,
    PasswordChange,
    ProfileOut,
    ProfileUpdate,
    RegisterRequest,
    SavedPaymentMethod,
    UserOut,
)
from security import get_password_hash, token_for, verify_password

log = logging.getLogger(__name__)

ALLOWED_METHODS = {m.value for m in PaymentMethodType}


def get_user_by_email(db: Session, email: str):
    return db.scalar(select(User).where(User.email == email))


def _auth_response(user: User) -> AuthResponse:
    return AuthResponse(access_token=token_for(user), user=UserOut.model_validate(user))


def register(db: Session, body: RegisterRequest) -> AuthResponse:
    if get_user_by_email(db, body.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    user = User(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        password=get_password_hash(body.password),
        role=UserRole.USER,
    )
    db.add(user)
    db.flush()
    if body.address is not None or body.billing_address is not None:
        db.add(ShippingProfile(
            user_id=user.id,
            shipping_address=body.address,
            billing_address=body.billing_address,
        ))
    db.commit()
    log.info("Registered user %s", user.id)
    return _auth_response(user)


def login(db: Session, body: LoginRequest) -> AuthResponse:
    user = get_user_by_email(db, body.email)
    if not user or not user.is_active or not verify_password(body.password, user.password):
        log.warning("Failed login for %s", body.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _auth_response(user)


def ensure_admin(db: Session, email: str, password: str) -> User:
    """Create the bootstrap admin, or promote an existing account with that email."""
    user = get_user_by_email(db, email)
    if user is None:
        user = User(first_name="Admin", last_name="", email=email, password=get_password_hash(password))
        db.add(user)
    user.role = UserRole.ADMIN
    user.is_active = True
    db.commit()
    return user


def _to_saved(method: PaymentMethod) -> SavedPaymentMethod:
    return SavedPaymentMethod(
        id=str(method.id),
        method=method.method,
        masked_label=method.masked_label,
        is_default=bool(method.is_default),
        paypal_email=method.paypal_email,
        card_brand=method.card_brand,
        card_last4=method.card_last4,
        card_expiry=method.card_expiry,
        bank_iban_last4=method.bank_iban_last4,
    )


def get_me(db: Session, user: User) -> ProfileOut:
    shipping = db.scalar(select(ShippingProfile).where(ShippingProfile.user_id == user.id))
    methods = db.scalars(
        select(PaymentMethod)
        .where(PaymentMethod.user_id == user.id)
        .order_by(PaymentMethod.is_default.desc(), PaymentMethod.updated_at.desc(), PaymentMethod.id)
    ).all()
    base = UserOut.model_validate(user).model_dump()
    return ProfileOut(
        **base,
        phone=shipping.phone if shipping else None,
        address=shipping.shipping_address if shipping else None,
        billing_address=shipping.billing_address if shipping else None,
        payment_methods=[_to_saved(m) for m in methods],
    )


def _text(value, limit):
    return value[:limit] if isinstance(value, str) else None


def _last4(value):
    if not isinstance(value, str):
        return None
    return re.sub(r"\D", "", value)[-4:]


def sanitize_payment_methods(methods) -> list[dict]:
    """
    Normalize a client-supplied list of saved payment methods.

    Entries without a usable id, label or method are dropped, free text is
    truncated, card and IBAN suffixes keep only their last four digits and
    fields that do not belong to the entry's method are cleared. The result
    always has exactly one default unless it is empty: the first entry marked
    default keeps it, or the first entry when none is marked.
    """
    normalized = []
    for candidate in methods or []:
        if not isinstance(candidate, dict):
            continue
        method_id = candidate.get("id")
        label = candidate.get("maskedLabel", candidate.get("masked_label"))
        method = candidate.get("method", candidate.get("type"))
        if not isinstance(method_id, str) or not method_id.strip():
            continue
        if not isinstance(label, str) or not label.strip():
            continue
        if method not in ALLOWED_METHODS:
            continue

        is_card = method == PaymentMethodType.CARD.value
        normalized.append({
            "id": method_id,
            "method": method,
            "masked_label": label[:120],
            "is_default": bool(candidate.get("isDefault", candidate.get("is_default"))),
            "paypal_email": _text(candidate.get("paypalEmail"), 120) if method == PaymentMethodType.PAYPAL.value else None,
            "card_brand": _text(candidate.get("cardBrand"), 40) if is_card else None,
            "card_last4": _last4(candidate.get("cardLast4")) if is_card else None,
            "card_expiry": _text(candidate.get("cardExpiry"), 5) if is_card else None,
            "bank_iban_last4": _last4(candidate.get("bankIbanLast4")) if method == PaymentMethodType.BANK.value else None,
        })

    if not normalized:
        return []

    if not any(m["is_default"] for m in normalized):
        normalized[0]["is_default"] = True
    else:
        found = False
        for m in normalized:
            if m["is_default"] and not found:
                found = True
                continue
            m["is_default"] = False
    return normalized


def update_profile(db: Session, user: User, body: ProfileUpdate) -> ProfileOut:
    fields = body.model_fields_set

    if body.email is not None and body.email != user.email:
        existing = get_user_by_email(db, body.email)
        if existing and existing.id != user.id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
        user.email = body.email
    if body.first_name is not None:
        user.first_name = body.first_name
    if body.last_name is not None:
        user.last_name = body.last_name

    if fields & {"phone", "address", "billing_address"}:
        shipping = db.scalar(select(ShippingProfile).where(ShippingProfile.user_id == user.id))
        if shipping is None:
            shipping = ShippingProfile(user_id=user.id, is_default=True)
            db.add(shipping)
        if "phone" in fields:
            shipping.phone = body.phone
        if "address" in fields:
            shipping.shipping_address = body.address
        if "billing_address" in fields:
            shipping.billing_address = body.billing_address

    if body.payment_methods is not None:
        sanitized = sanitize_payment_methods(body.payment_methods)
        # full replacement, not a merge
        db.execute(delete(PaymentMethod).where(PaymentMethod.user_id == user.id))
        for method in sanitized:
            db.add(PaymentMethod(
                user_id=user.id,
                method=PaymentMethodType(method["method"]),
                masked_label=method["masked_label"],
                is_default=method["is_default"],
                paypal_email=method["paypal_email"],
                card_brand=method["card_brand"],
                card_last4=method["card_last4"],
                card_expiry=method["card_expiry"],
                bank_iban_last4=method["bank_iban_last4"],
            ))

    db.commit()
    log.info("Updated profile of user %s", user.id)
    return get_me(db, user)


def change_password(db: Session, user: User, body: PasswordChange) -> dict:
    if not verify_password(body.current_password, user.password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")
    user.password = get_password_hash(body.new_password)
    db.commit()
    log.info("Password changed for user %s", user.id)
    return {"success": True}
