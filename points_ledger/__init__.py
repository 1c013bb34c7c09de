import os
import logging

import click
from flask import Flask, jsonify

from points_ledger.config import config_by_name
from points_ledger.extensions import db, migrate, limiter


def create_app(config_name=None, config_overrides=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if config_overrides:
        app.config.update(config_overrides)

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from points_ledger import models  # noqa: F401

    # --- Ledger services (configured once, from app.config) ---
    from points_ledger.services import init_services
    init_services(app)

    # --- Register blueprints ---
    from points_ledger.blueprints.webhooks import webhooks_bp
    from points_ledger.blueprints.checkout import checkout_bp
    from points_ledger.blueprints.admin import admin_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(admin_bp)

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal Server Error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("init-db")
    def init_db():
        """Create the purchase_events and user_points tables if missing.

        Usage:
            flask init-db

        Production schema changes go through `flask db upgrade`.
        """
        db.create_all()
        click.echo("Database schema initialized.")

    @app.cli.command("list-products")
    def list_products():
        """Print the configured product catalog."""
        from points_ledger.services import get_services

        catalog = get_services().catalog
        click.echo(f"{len(catalog)} products:")
        for product in catalog:
            click.echo(
                f"  {product.id}: {product.name}, {product.price} "
                f"({product.points} points)"
            )

    @app.cli.command("reconcile-points")
    @click.option("--apply", "apply_fix", is_flag=True,
                  help="Credit the missing points instead of only reporting them.")
    def reconcile_points(apply_fix):
        """Compare balances with the ledger's PAYMENT_SUCCESS rows.

        A balance below its ledger sum is a reconciliation gap left by a
        failed increment; --apply credits the difference. A balance above
        the sum is reported but never reduced.

        Usage:
            flask reconcile-points
            flask reconcile-points --apply
        """
        from points_ledger.services import get_services

        services = get_services()
        expected = services.store.success_totals()
        actual = services.projector.all_balances()

        gaps = 0
        for customer_id in sorted(set(expected) | set(actual)):
            want = expected.get(customer_id, 0)
            have = actual.get(customer_id, 0)
            if want == have:
                continue
            gaps += 1
            if want > have:
                click.echo(f"  {customer_id}: balance {have}, ledger {want} (missing {want - have})")
                if apply_fix:
                    total = services.projector.apply_points(customer_id, want - have)
                    click.echo(f"    credited {want - have}, new total {total}")
            else:
                click.echo(f"  {customer_id}: balance {have} exceeds ledger {want}")

        if gaps:
            click.echo(f"{gaps} customer(s) out of balance.")
        else:
            click.echo("All balances match the ledger.")
