# services/parsing.py
# Request-value coercion shared by the blueprints.
from datetime import date, datetime

from flask import request

from services.errors import CRMError

_TRUE = {"1", "true", "yes", "on", "y"}


def parse_bool(v, default=None):
    if v is None or v == "":
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in _TRUE


def parse_date(v, field="date"):
    if v in (None, ""):
        return None
    if isinstance(v, date):
        return v
    try:
        return date.fromisoformat(str(v)[:10])
    except ValueError:
        raise CRMError(f"{field} must be an ISO date (YYYY-MM-DD)")


def parse_datetime(v, field="datetime"):
    """ISO-8601; a trailing ``Z`` or offset is converted to naive UTC."""
    if v in (None, ""):
        return None
    if isinstance(v, datetime):
        return v
    s = str(v).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        raise CRMError(f"{field} must be an ISO datetime")
    if dt.tzinfo is not None:
        dt = (dt - dt.utcoffset()).replace(tzinfo=None)
    return dt


def parse_int(v, field="value", default=None):
    if v in (None, ""):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        raise CRMError(f"{field} must be an integer")


def page_args(default_size=20, max_size=100):
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    size = request.args.get("per_page", None, type=int) or request.args.get("limit", default_size, type=int)
    size = min(max(size or default_size, 1), max_size)
    return page, size


def paginate(query, default_size=20, serialize=None):
    """Offset pagination -> dict with items/total/page/per_page/pages."""
    page, size = page_args(default_size)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * size).limit(size).all()
    serialize = serialize or (lambda r: r.to_dict())
    return {
        "items": [serialize(r) for r in rows],
        "total": total,
        "page": page,
        "per_page": size,
        "pages": (total + size - 1) // size if total else 0,
    }
