from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

import config


class Base(DeclarativeBase):
    pass


def make_engine(url: str, echo: bool = False):
    connect_args = {}
    if url.startswith("sqlite"):
        # FastAPI serves sync handlers from a threadpool
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=echo, connect_args=connect_args, pool_pre_ping=True)


engine = make_engine(config.DATABASE_URL, echo=config.SQL_ECHO)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind=None):
    # models must be imported so their tables are registered on Base.metadata
    import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
