"""
sitestock/security.py

Access control helpers for the site inventory app.

Key rules:
- UI is never trusted; all permission checks are server-side.
- Admin / super admin: full access to every site.
- Other approved users: only sites in their SiteAccess grants.
  - read: view stock, summaries, exports and files
  - write / admin: also record shipments

IMPORTANT:
- Decorators keep the view name (functools.wraps) so endpoints stay unique.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Tuple

from flask import render_template
from flask_login import current_user

from .models import ACCESS_ADMIN, ACCESS_READ, ACCESS_WRITE

_LEVEL_RANK = {ACCESS_READ: 1, ACCESS_WRITE: 2, ACCESS_ADMIN: 3}


def _forbidden() -> Tuple[str, int]:
    """Render a consistent 403 page."""
    return render_template("errors/403.html"), 403


def is_admin() -> bool:
    """Return True if current user is authenticated and admin (or super admin)."""
    return bool(current_user.is_authenticated and getattr(current_user, "is_admin", False))


def is_super_admin() -> bool:
    return bool(current_user.is_authenticated and getattr(current_user, "is_super_admin", False))


def has_site_access(site_id: int, level: str = ACCESS_READ) -> bool:
    """True if the current user holds at least `level` on the site."""
    if not current_user.is_authenticated:
        return False
    granted = current_user.access_for(site_id)
    if granted is None:
        return False
    return _LEVEL_RANK.get(granted, 0) >= _LEVEL_RANK[level]


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def super_admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: super-admin only (role changes, transaction deletion)."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_super_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper


def site_access_required(level: str = ACCESS_READ) -> Callable[..., Any]:
    """
    Decorator factory: permission on the site named by the `site_id` view arg.

    Usage:
        @site_access_required(ACCESS_WRITE)
        def incoming(site_id, material): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            site_id = kwargs.get("site_id")
            if site_id is None or not has_site_access(site_id, level):
                return _forbidden()
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
