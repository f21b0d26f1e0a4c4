"""
sitestock/audit.py

Audit trail for every mutation of users, sites, grants, materials and stock.

Each entry records the acting account (id plus an email copy that survives
account deletion), the entity type/id, the action, JSON snapshots of the row
before and after, and the client IP.

IMPORTANT:
- log_action only adds to the session; the caller commits.
  Pattern: db.session.flush() -> log_action(...) -> db.session.commit()
- CLI commands have no request: actor and IP are stored as NULL.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog

# Columns never copied into a snapshot
_HIDDEN_COLUMNS = frozenset({"password_hash"})


def _column_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """Column name -> text value for one row (relationships are not followed)."""
    return {
        column.name: _column_text(getattr(instance, column.name))
        for column in instance.__table__.columns
        if column.name not in _HIDDEN_COLUMNS
    }


def _actor() -> tuple:
    """(user id, email, ip) of whoever is making the current request."""
    if not has_request_context():
        return None, None, None
    if current_user.is_authenticated:
        return current_user.id, current_user.email, request.remote_addr
    return None, None, request.remote_addr


def log_action(
    entity: Any,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Queue an AuditLog row for `entity`.

    The entity must already have a primary key, so flush new rows first.
    `action` is CREATE / UPDATE / DELETE or a status verb (APPROVE, SUSPEND, ...).
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError(f"Cannot audit an unsaved {entity.__class__.__name__}; flush the session first.")

    user_id, email, ip_address = _actor()
    db.session.add(
        AuditLog(
            user_id=user_id,
            username_snapshot=email,
            entity_type=entity.__class__.__name__,
            entity_id=int(entity_id),
            action=str(action),
            before_data=json.dumps(before, ensure_ascii=False) if before else None,
            after_data=json.dumps(after, ensure_ascii=False) if after else None,
            ip_address=ip_address,
        )
    )


def history_for(entity_type: str, entity_id: int, limit: int = 20) -> List[AuditLog]:
    """Latest audit entries for one entity, newest first."""
    return (
        AuditLog.query.filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
