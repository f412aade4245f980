import os

import click
from flask import Flask, jsonify

from storehook.config import config_by_name
from storehook.extensions import db, migrate, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Logging ---
    from storehook.services.webhook_logger import configure_logging
    configure_logging(app)

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from storehook import models  # noqa: F401

    # --- Register blueprints ---
    from storehook.blueprints.webhooks import webhooks_bp

    app.register_blueprint(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify(error="Bad request"), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify(error="Unauthorized"), 401

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="Not found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(error="Method not allowed"), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(error="Too many requests"), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(error="Internal server error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # JSON API: nothing should ever frame or render it
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'"
        )
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("webhook-status")
    @click.option("--limit", default=10, show_default=True,
                  help="How many recent failures to list.")
    def webhook_status(limit):
        """Summarize webhook_events by status and list recent failures.

        Usage:
            flask webhook-status
            flask webhook-status --limit 25
        """
        from storehook.models.webhook_event import WebhookEvent

        counts = dict(
            db.session.execute(
                db.select(WebhookEvent.status, db.func.count(WebhookEvent.id))
                .group_by(WebhookEvent.status)
            ).all()
        )

        click.echo("")
        click.echo("=" * 60)
        click.echo("Webhook events")
        click.echo("=" * 60)
        for status in WebhookEvent.STATUSES:
            click.echo(f"  {status:<10} {counts.get(status, 0)}")

        failures = (
            WebhookEvent.query
            .filter_by(status="failed")
            .order_by(WebhookEvent.received_at.desc())
            .limit(limit)
            .all()
        )
        if failures:
            click.echo("")
            click.echo("Recent failures:")
            for event in failures:
                click.echo(
                    f"  {event.received_at}  {event.topic:<18} "
                    f"{event.resource_id or '-':<16} {event.error_message}"
                )
        click.echo("=" * 60)

    @app.cli.command("register-webhooks")
    @click.option("--dry-run", is_flag=True,
                  help="Show what would be registered without calling Shopify.")
    def register_webhooks(dry_run):
        """Subscribe WEBHOOK_PUBLIC_URL to every handled topic.

        Topics already subscribed to the same address are skipped.

        Usage:
            flask register-webhooks
            flask register-webhooks --dry-run
        """
        from storehook.services.shopify_admin import (
            ShopifyAdminError,
            list_webhooks,
            register_webhook,
        )
        from storehook.services.shopify_service import TOPIC_HANDLERS

        shop = app.config.get("SHOPIFY_STORE_DOMAIN")
        token = app.config.get("SHOPIFY_ACCESS_TOKEN")
        version = app.config["SHOPIFY_API_VERSION"]
        address = app.config.get("WEBHOOK_PUBLIC_URL")

        if not shop or not token:
            raise click.ClickException(
                "SHOPIFY_STORE_DOMAIN and SHOPIFY_ACCESS_TOKEN must be set."
            )
        if not address:
            raise click.ClickException("WEBHOOK_PUBLIC_URL must be set.")

        click.echo(f"Registering {len(TOPIC_HANDLERS)} topics on {shop} -> {address}")
        if dry_run:
            for topic in TOPIC_HANDLERS:
                click.echo(f"  [dry-run] {topic}")
            return

        try:
            existing = {
                w.get("topic")
                for w in list_webhooks(shop, token, version)
                if w.get("address") == address
            }
        except ShopifyAdminError as e:
            raise click.ClickException(str(e))

        failed = 0
        for topic in TOPIC_HANDLERS:
            if topic in existing:
                click.echo(f"  = {topic} (already registered)")
                continue
            try:
                register_webhook(shop, token, version, topic, address)
                click.echo(f"  + {topic}")
            except ShopifyAdminError as e:
                failed += 1
                click.echo(f"  ! {e}", err=True)

        if failed:
            raise click.ClickException(f"{failed} topic(s) failed to register.")
        click.echo("Done.")
