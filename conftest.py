"""Shared pytest fixtures: an in-memory app, a company with users and a small catalog."""

import datetime
import os
from decimal import Decimal

import pytest

os.environ["DATABASE_URI"] = "sqlite://"  # In-memory database for tests
os.environ["APP_SECRET_KEY"] = "test-secret-key"
os.environ["EMAIL_ENABLED"] = "false"
os.environ.setdefault("CONFIG_PATH", os.path.join(os.path.dirname(__file__), "no-config.yaml"))

from app import create_app  # noqa: E402
from extensions import db, limiter  # noqa: E402
from models import Company, Customer, Order, Product  # noqa: E402
from services.auth import create_user  # noqa: E402
from services.tenant import activate_tenant  # noqa: E402

TEST_PASSWORD = "testpassword"


@pytest.fixture
def app():
    """Create application for testing."""
    application = create_app()
    application.config["TESTING"] = True
    application.config["WTF_CSRF_ENABLED"] = False
    application.config["RATELIMIT_ENABLED"] = False
    # Read once in init_app, so the config flag above comes too late
    limiter.enabled = False
    yield application


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def ctx(app):
    """Application context for calling services directly."""
    with app.app_context():
        yield


@pytest.fixture
def company(ctx):
    """Active company with an admin and a photographer."""
    company = Company(name="Nordlys Foto", subdomain="nordlys")
    db.session.add(company)
    db.session.flush()
    create_user(company, "admin@nordlys.no", "Admin", TEST_PASSWORD, role="admin")
    create_user(company, "foto@nordlys.no", "Kari Foto", TEST_PASSWORD, role="photographer")
    db.session.commit()
    activate_tenant(company)
    return company


@pytest.fixture
def customer(company):
    customer = Customer(
        company_id=company.id,
        name="Meglerhuset AS",
        email="post@meglerhuset.no",
        payment_terms=14,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def make_product(company, name, price, vat_rate="25", pke="0", pki="0", fee="0", **kwargs):
    product = Product(
        company_id=company.id,
        name=name,
        price_ex_vat=Decimal(price),
        vat_rate=Decimal(vat_rate),
        pke=Decimal(pke),
        pki=Decimal(pki),
        photographer_fee=Decimal(fee),
        **kwargs,
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture
def products(company):
    """Standard photo package, drone add-on and a zero-VAT floor plan."""
    return {
        "standard": make_product(
            company, "Standard boligfoto", "3500", pke="500", pki="200", fee="1200"
        ),
        "drone": make_product(company, "Dronefoto", "1500", pke="100", fee="400"),
        "plan": make_product(company, "Plantegning", "900", vat_rate="0", pki="150"),
    }


def set_order_status(order_id, status):
    """Move an order straight to *status*, bypassing the service layer."""
    order = db.session.get(Order, order_id)
    order.status = status
    db.session.commit()
    return order


def at(year, month, day, hour=10):
    return datetime.datetime(year, month, day, hour, 0)


@pytest.fixture
def logged_in_client(client, app):
    """Create test client with logged-in admin session plus seeded data ids."""
    with app.app_context():
        company = Company(name="Nordlys Foto", subdomain="nordlys")
        db.session.add(company)
        db.session.flush()
        create_user(company, "admin@nordlys.no", "Admin", TEST_PASSWORD, role="admin")
        photographer = create_user(
            company, "foto@nordlys.no", "Kari Foto", TEST_PASSWORD, role="photographer"
        )
        customer = Customer(
            company_id=company.id, name="Meglerhuset AS", email="post@meglerhuset.no"
        )
        db.session.add(customer)
        db.session.commit()
        activate_tenant(company)
        standard = make_product(
            company, "Standard boligfoto", "3500", pke="500", pki="200", fee="1200"
        )
        drone = make_product(company, "Dronefoto", "1500", pke="100", fee="400")
        client.ids = {
            "company": company.id,
            "customer": customer.id,
            "photographer": photographer.id,
            "standard": standard.id,
            "drone": drone.id,
        }
        activate_tenant(None)
    response = client.post(
        "/api/auth/login",
        json={"email": "admin@nordlys.no", "password": TEST_PASSWORD},
    )
    assert response.status_code == 200
    return client
