"""
Utility functions shared across the app. This includes:
- form parsing helpers (_parse_* style: return None on empty/invalid input)
- safe_next_url: local-only redirect targets
- csv_response: CSV download responses
- generate_site_code / unique_site_code: short human site codes ("MAP-123")
"""

from __future__ import annotations

import csv
import io
import time
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional
from urllib.parse import urlparse

from flask import Response, url_for

from .models import Site


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def parse_decimal(value: str | None) -> Decimal | None:
    """Parse decimal from user input (accepts comma or dot)."""
    if value is None:
        return None
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        return Decimal(raw)
    except (InvalidOperation, ValueError):
        return None


def parse_amount(value: str | None) -> float | None:
    """Positive-or-zero float from a form field, None if empty/invalid."""
    number = parse_decimal(value)
    if number is None or not number.is_finite():
        return None
    return float(number)


def parse_optional_int(value: str | None) -> int | None:
    """Parse optional int from form/query."""
    if value is None:
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def clean_str(value: str | None) -> str | None:
    raw = (value or "").strip()
    return raw or None


# ---------------------------------------------------------------------
# Redirects
# ---------------------------------------------------------------------
def safe_next_url(raw_next: str | None, fallback_endpoint: str, **values) -> str:
    """
    Return a safe local next URL.

    Rules:
    - Only allow relative URLs (no scheme/netloc).
    - Fall back to an internal endpoint if invalid/empty.
    """
    if not raw_next:
        return url_for(fallback_endpoint, **values)

    try:
        parsed = urlparse(raw_next)
    except ValueError:
        return url_for(fallback_endpoint, **values)

    if parsed.scheme or parsed.netloc:
        return url_for(fallback_endpoint, **values)

    if not raw_next.startswith("/") or raw_next.startswith("//"):
        return url_for(fallback_endpoint, **values)

    return raw_next


# ---------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------
def csv_response(filename: str, rows: Iterable[Iterable]) -> Response:
    output = io.StringIO()
    writer = csv.writer(output)
    for row in rows:
        writer.writerow(row)
    resp = Response(output.getvalue(), mimetype="text/csv")
    resp.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return resp


# ---------------------------------------------------------------------
# Site codes
# ---------------------------------------------------------------------
def generate_site_code(site_name: str, now_ms: Optional[int] = None) -> str:
    """
    Site code from a site name.

    One word -> its first 3 letters; otherwise initials of the first 3 words.
    Uppercased and suffixed with the last 3 digits of the millisecond clock:
        "Marina"            -> "MAR-417"
        "Green Valley Park" -> "GVP-417"
    """
    words = [w for w in (site_name or "").split() if w]
    if not words:
        prefix = "SIT"
    elif len(words) == 1:
        prefix = words[0][:3]
    else:
        prefix = "".join(w[0] for w in words[:3])

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = str(now_ms)[-3:].rjust(3, "0")
    return f"{prefix.upper()}-{suffix}"


# Suffixes are three clock digits, so at most 1000 codes share a prefix
_CODE_ATTEMPTS = 1000


def unique_site_code(site_name: str, now_ms: Optional[int] = None) -> str:
    """generate_site_code, stepping the clock suffix past codes already taken."""
    base_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    code = generate_site_code(site_name, now_ms=base_ms)
    attempt = 1
    while attempt < _CODE_ATTEMPTS and Site.query.filter_by(site_code=code).first():
        code = generate_site_code(site_name, now_ms=base_ms + attempt)
        attempt += 1
    return code
