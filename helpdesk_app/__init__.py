# helpdesk_app/__init__.py
"""
Application factory for the WhatsApp helpdesk bot.
"""

from __future__ import annotations

import logging

import click
from flask import Flask

from .config import cfg
from .logging_cfg import configure_logging


def create_app(services=None) -> Flask:
    """
    Create and configure the Flask application.

    Used by:
      - run.py (local dev)
      - wsgi.py / gunicorn (production)
      - tests, which pass pre-wired `services` with fake gateway / classifier
    """
    # Configure Python logging first
    configure_logging()
    logger = logging.getLogger(__name__)
    logger.info("Creating helpdesk bot app")

    app = Flask(__name__)

    # Basic config surface (so you can inspect from `app.config`)
    app.config.update(
        SECRET_KEY=cfg.SECRET_KEY,
        DATABASE_URL=cfg.DATABASE_URL,
        BOT_NUMBER=cfg.BOT_NUMBER,
        WHATSAPP_BRIDGE_URL=cfg.WHATSAPP_BRIDGE_URL,
        OLLAMA_BASE_URL=cfg.OLLAMA_BASE_URL,
        OLLAMA_MODEL=cfg.OLLAMA_MODEL,
        ENV="production" if not cfg.DEBUG else "development",
        DEBUG=cfg.DEBUG,
        TESTING=cfg.TESTING,
    )

    # Schema first: an unreachable database aborts startup here.
    from .services.schema import init_schema
    init_schema()

    from .core.message_handler import build_services
    if services is None:
        services = build_services()
        services.classifier.check_connection()
    app.extensions["helpdesk"] = services

    # Register blueprints
    from .blueprints.webhook import bp as webhook_bp
    app.register_blueprint(webhook_bp)

    # Error handlers (JSON)
    from .core.errors import register_error_handlers
    register_error_handlers(app)

    register_cli(app)

    if cfg.SCHEDULER_ENABLED and not cfg.TESTING:
        from .services.maintenance import MaintenanceScheduler
        scheduler = MaintenanceScheduler(services.repo)
        scheduler.start()
        app.extensions["helpdesk_scheduler"] = scheduler

    logger.info("Helpdesk bot app created")
    return app


def register_cli(app: Flask) -> None:
    """`flask --app wsgi init-db | cleanup | backup | export`"""
    from .services import maintenance
    from .services.schema import init_schema

    def repo():
        return app.extensions["helpdesk"].repo

    @app.cli.command("init-db")
    def init_db_command():
        init_schema()
        click.echo("Database schema ready.")

    @app.cli.command("cleanup")
    @click.option("--days", type=int, default=None, help="Retention window in days.")
    def cleanup_command(days):
        removed = maintenance.purge_expired_tickets(repo(), days)
        click.echo(f"Removed {removed} closed tickets.")

    @app.cli.command("backup")
    def backup_command():
        backup = maintenance.create_backup(repo(), kind="manual")
        click.echo(f"Backup written to {backup['path']} ({backup['size_bytes']} bytes).")

    @app.cli.command("export")
    def export_command():
        path = maintenance.export_tickets_csv(repo())
        click.echo(f"Tickets exported to {path}.")


__all__ = ("create_app",)
