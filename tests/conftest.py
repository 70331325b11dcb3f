from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import get_db, init_db, make_engine
from main import app
from models import Category, Product, User, UserRole
from security import get_password_hash, token_for


@pytest.fixture()
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # no context manager: the lifespan (logging, startup sync) stays off in tests
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email="mario@example.com", password="secret123", role=UserRole.USER):
    user = User(first_name="Mario", last_name="Rossi", email=email, password=get_password_hash(password), role=role)
    db.add(user)
    db.commit()
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture()
def user(db):
    return make_user(db)


@pytest.fixture()
def admin_user(db):
    return make_user(db, email="admin@example.com", role=UserRole.ADMIN)


@pytest.fixture()
def headers(user):
    return auth_headers(user)


@pytest.fixture()
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture()
def category(db):
    category = Category(name="Keyboards", slug="keyboards")
    db.add(category)
    db.commit()
    return category


@pytest.fixture()
def products(db, category):
    items = [
        Product(name="Mechanical Keyboard", slug="mech-keyboard", price=Decimal("19.99"), stock=10, category_id=category.id),
        Product(name="Keycap Set", slug="keycaps", price=Decimal("5.50"), stock=3, category_id=category.id, featured=True),
        Product(name="Old Switches", slug="old-switches", price=Decimal("2.00"), stock=0, is_active=False),
    ]
    db.add_all(items)
    db.commit()
    return items
