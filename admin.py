from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import LogFile, Order, User
from schemas import AdminUserOut, UserOut


def list_users_with_stats(db: Session):
    stats = (
        select(
            Order.user_id,
            func.count(Order.id).label("order_count"),
            func.coalesce(func.sum(Order.total), 0).label("total_spent"),
        )
        .group_by(Order.user_id)
        .subquery()
    )
    rows = db.execute(
        select(User, stats.c.order_count, stats.c.total_spent)
        .outerjoin(stats, stats.c.user_id == User.id)
        .order_by(User.created_at.desc(), User.id.desc())
    ).all()
    return [
        AdminUserOut(
            **UserOut.model_validate(user).model_dump(),
            order_count=order_count or 0,
            total_spent=float(total_spent or 0),
        )
        for user, order_count, total_spent in rows
    ]


def list_user_orders(db: Session, user_id: int):
    if db.get(User, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return db.scalars(
        select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    ).all()


def list_log_files(db: Session):
    return db.scalars(select(LogFile).order_by(LogFile.last_modified_at.desc())).all()
