"""Blueprint registration."""

from routes.auth import auth_bp
from routes.customers import customers_bp
from routes.dashboard import dashboard_bp
from routes.invoices import invoices_bp
from routes.orders import orders_bp
from routes.photographers import photographers_bp
from routes.products import products_bp

ALL_BLUEPRINTS = [
    auth_bp,
    customers_bp,
    products_bp,
    orders_bp,
    photographers_bp,
    invoices_bp,
    dashboard_bp,
]


def register_blueprints(app):
    """Register all application blueprints on *app*."""
    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)
