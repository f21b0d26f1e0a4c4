"""
Authentication Routes

Provides:
- /auth/login
- /auth/register (creates a pending account)
- /auth/logout
- /auth/seed-admin (first system bootstrap)

Rules:
- Only approved users may sign in; pending / rejected / suspended each get their own message.
- New accounts wait for an admin to approve them.
"""

from flask import (
    Blueprint,
    render_template,
    redirect,
    url_for,
    flash,
    request,
)
from flask_login import (
    login_user,
    logout_user,
    login_required,
    current_user,
)

from ...accounts import AccountError, authenticate, register_user
from ...models import User
from ...seed import create_super_admin
from ...utils import safe_next_url


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    """Authenticate a user (approved accounts only)."""

    if current_user.is_authenticated:
        return redirect(url_for("sites.list_sites"))

    if request.method == "POST":
        try:
            user = authenticate(request.form.get("email"), request.form.get("password"))
        except AccountError as exc:
            flash(exc.message, exc.category)
            return render_template("auth/login.html", email=request.form.get("email", ""))

        login_user(user)
        flash("Login successful!", "success")

        return redirect(safe_next_url(request.args.get("next"), "sites.list_sites"))

    return render_template("auth/login.html", email="")


# ============================================================
# REGISTER
# ============================================================

@auth_bp.route("/register", methods=["GET", "POST"])
def register():
    """Self sign-up. The account stays pending until an admin approves it."""

    if current_user.is_authenticated:
        return redirect(url_for("sites.list_sites"))

    if request.method == "POST":
        form = request.form
        try:
            register_user(
                email=form.get("email"),
                password=form.get("password"),
                confirm_password=form.get("confirm_password"),
                full_name=form.get("full_name"),
                requested_access_reason=form.get("requested_access_reason"),
                phone=form.get("phone"),
                company_name=form.get("company_name"),
            )
        except AccountError as exc:
            flash(exc.message, exc.category)
            return render_template("auth/register.html", form=form)

        flash(
            "Registration successful! Your account is pending approval. "
            "You will be able to sign in once an administrator approves it.",
            "success",
        )
        return redirect(url_for("auth.login"))

    return render_template("auth/register.html", form={})


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log out the current user."""
    logout_user()
    flash("You have been signed out.", "info")
    return redirect(url_for("auth.login"))


# ============================================================
# SEED FIRST ADMIN (BOOTSTRAP)
# ============================================================

@auth_bp.route("/seed-admin", methods=["GET", "POST"])
def seed_admin():
    """
    Bootstrap the FIRST super admin of the system.

    If ANY user already exists the page is closed.
    """

    if User.query.count() > 0:
        flash("A user already exists. Please sign in.", "warning")
        return redirect(url_for("auth.login"))

    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")

        if not email or len(password) < 6:
            flash("Enter an email and a password of at least 6 characters.", "danger")
            return render_template("auth/seed_admin.html")

        create_super_admin(email, password, full_name=request.form.get("full_name") or "System Administrator")

        flash("Super admin created. Please sign in.", "success")
        return redirect(url_for("auth.login"))

    return render_template("auth/seed_admin.html")
