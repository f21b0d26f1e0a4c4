"""
sitestock/__init__.py

Flask application factory for the construction-site inventory app.

- SQLite for dev, any SQLAlchemy URL via DATABASE_URL (migrations via Flask-Migrate).
- UI is never trusted; server-side access control is enforced in every route.

Navigation:
- Sidebar contains 2 sections:
  1) Sites
  2) Administration (admins only)
Per-material pages are linked from each site dashboard.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, flash, redirect, render_template, request, url_for
from flask_login import current_user, logout_user
from werkzeug.exceptions import RequestEntityTooLarge

from .extensions import csrf, db, login_manager, migrate
from .models import User

# Blueprint imports kept inside create_app() where possible to reduce import side effects.


# -------------------------------------------------------------------
# NAVIGATION STRUCTURE (UI visibility only; security enforced in routes)
# -------------------------------------------------------------------

NAV_SECTIONS = [
    {
        "key": "sites",
        "label": "Sites",
        "auth_required": True,
        "items": [
            {"label": "All Sites", "endpoint": "sites.list_sites", "admin_only": False},
            {"label": "New Site", "endpoint": "sites.create_site", "admin_only": True},
        ],
    },
    {
        "key": "administration",
        "label": "Administration",
        "auth_required": True,
        "items": [
            {"label": "Pending Approvals", "endpoint": "admin.pending_users", "admin_only": True},
            {"label": "Users", "endpoint": "admin.users_list", "admin_only": True},
            {"label": "Custom Materials", "endpoint": "admin.materials_list", "admin_only": True},
        ],
    },
]


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger(__name__).setLevel(level)
    app.logger.setLevel(level)


def create_app(config_object: str | type = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    login_manager.init_app(app)
    login_manager.login_view = "auth.login"
    login_manager.login_message_category = "info"

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    # ----------------------------------------------------------------------
    # GLOBAL SECURITY NET: sessions of suspended / rejected users end at once.
    # ----------------------------------------------------------------------
    @app.before_request
    def _status_guard_hook():
        if current_user.is_authenticated and not current_user.is_active:
            from .accounts import BLOCKED_STATUS_MESSAGES

            message, category = BLOCKED_STATUS_MESSAGES.get(
                current_user.status, ("Your account is not active.", "danger")
            )
            logout_user()
            flash(message, category)
            return redirect(url_for("auth.login"))
        return None

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.sites import sites_bp
    from .blueprints.inventory import inventory_bp
    from .blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(sites_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(admin_bp)

    # ----------------------------------------------------------------------
    # Context globals (navigation)
    # ----------------------------------------------------------------------
    @app.context_processor
    def inject_globals():
        """
        Inject navigation filtered by user.

        SECURITY NOTE:
        - This only filters visibility. Routes enforce permissions.
        """
        visible_sections = []

        for section in NAV_SECTIONS:
            if section.get("auth_required", False) and not current_user.is_authenticated:
                continue

            visible_items = []
            for item in section.get("items", []):
                if item.get("admin_only", False):
                    if not (current_user.is_authenticated and current_user.is_admin):
                        continue
                visible_items.append(item)

            if visible_items:
                visible_sections.append(
                    {"key": section["key"], "label": section["label"], "items": visible_items}
                )

        return {"config": app.config, "nav_sections": visible_sections}

    # ----------------------------------------------------------------------
    # Errors
    # ----------------------------------------------------------------------
    @app.errorhandler(403)
    def forbidden(_error):
        return render_template("errors/403.html"), 403

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(_error):
        flash("File size must be less than 10MB", "danger")
        return redirect(request.referrer or url_for("index"))

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("create-super-admin")
    @click.argument("email")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--name", "full_name", default="System Administrator", show_default=True)
    def create_super_admin_command(email: str, password: str, full_name: str):
        """Create or promote an approved super admin."""
        from .seed import create_super_admin

        user = create_super_admin(email, password, full_name=full_name)
        click.echo(f"Super admin ready: {user.email}")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Seed a demo site with some stock."""
        from .seed import seed_demo

        site = seed_demo()
        click.echo(f"Demo site ready: {site.site_code}")

    # ----------------------------------------------------------------------
    # Home
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        """Home: redirect to sites or login."""
        if current_user.is_authenticated:
            return redirect(url_for("sites.list_sites"))
        return redirect(url_for("auth.login"))

    return app
