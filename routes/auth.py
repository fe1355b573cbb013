# routes/auth.py
from __future__ import annotations
from datetime import datetime, timedelta
from functools import wraps

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
    verify_jwt_in_request,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from extensions import db
from models.user import ROLES, User

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _now_utc() -> datetime:
    return datetime.utcnow()


def _fmt_expires(dt: datetime) -> str:
    return dt.strftime("%Y/%m/%d %H:%M:%S")


def _access_delta() -> timedelta:
    return timedelta(hours=current_app.config.get("JWT_ACCESS_HOURS", 2))


def _refresh_delta() -> timedelta:
    return timedelta(days=current_app.config.get("JWT_REFRESH_DAYS", 30))


# ==== helpers shared by the other blueprints ====

def current_user_id() -> int | None:
    ident = get_jwt_identity()
    if ident is None:
        return None
    try:
        return int(ident)
    except (TypeError, ValueError):
        return None


def current_user() -> User | None:
    uid = current_user_id()
    return db.session.get(User, uid) if uid else None


def current_roles() -> list[str]:
    roles = (get_jwt() or {}).get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return list(roles)


def is_admin() -> bool:
    return "admin" in current_roles()


def role_required(*required_roles):
    """
    Restrict a view to the given roles.
    Usage: @role_required("admin", "counselor")
    """
    def wrapper(fn):
        @wraps(fn)
        def decorated_view(*args, **kwargs):
            verify_jwt_in_request()
            if not any(role in current_roles() for role in required_roles):
                return jsonify({"success": False, "message": "Permission denied"}), 403
            return fn(*args, **kwargs)
        return decorated_view
    return wrapper


def _token_payload(user: User) -> dict:
    identity = str(user.id)
    claims = {"roles": user.roles}
    access_expires_at = _now_utc() + _access_delta()
    access_token = create_access_token(
        identity=identity,
        additional_claims=claims,
        expires_delta=_access_delta(),
    )
    refresh_token = create_refresh_token(
        identity=identity,
        additional_claims=claims,
        expires_delta=_refresh_delta(),
    )
    return {
        "accessToken": access_token,
        "refreshToken": refresh_token,
        "expires": _fmt_expires(access_expires_at),
    }


# ==== endpoints ====

@auth_bp.post("/login")
def login():
    """
    Body: {"username": "...", "password": "..."}; ``username`` may also be an e-mail.
    """
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or data.get("email") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        return jsonify({"success": False, "message": "Username and password are required"}), 400

    user = User.query.filter(
        (User.username == username) | (User.email == username.lower())
    ).first()
    if not user or not user.check_password(password):
        return jsonify({"success": False, "message": "Invalid credentials"}), 401
    if not user.is_active:
        return jsonify({"success": False, "message": "Account is disabled"}), 403

    user.last_login_at = _now_utc()
    db.session.commit()

    tokens = _token_payload(user)
    return jsonify({"success": True, **tokens, "user": user.to_dict()}), 200


@auth_bp.post("/refresh-token")
def refresh_token():
    """Body: {"refreshToken": "..."}; returns a new access token."""
    data = request.get_json(silent=True) or {}
    raw_refresh = data.get("refreshToken", "")
    if not raw_refresh:
        return jsonify({"success": False, "message": "refreshToken is required"}), 401

    try:
        decoded = decode_token(raw_refresh)
    except (JWTExtendedException, PyJWTError):
        return jsonify({"success": False, "message": "refreshToken is invalid or expired"}), 401

    if decoded.get("type") != "refresh":
        return jsonify({"success": False, "message": "refreshToken is invalid or expired"}), 401

    user = db.session.get(User, int(decoded["sub"])) if str(decoded.get("sub", "")).isdigit() else None
    if not user or not user.is_active:
        return jsonify({"success": False, "message": "refreshToken is invalid or expired"}), 401

    access_expires_at = _now_utc() + _access_delta()
    new_access = create_access_token(
        identity=str(user.id),
        additional_claims={"roles": user.roles},
        expires_delta=_access_delta(),
    )
    return jsonify({
        "success": True,
        "accessToken": new_access,
        "refreshToken": raw_refresh,
        "expires": _fmt_expires(access_expires_at),
    }), 200


@auth_bp.post("/register")
@role_required("admin")
def register():
    """Admins create staff accounts: {username, email, password, name?, role?}."""
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    role = (data.get("role") or "counselor").strip().lower()

    if not username or not email or not password:
        return jsonify({"success": False, "message": "username, email and password are required"}), 400
    if len(password) < 8:
        return jsonify({"success": False, "message": "Password must be at least 8 characters"}), 400
    if role not in ROLES:
        return jsonify({"success": False, "message": f"role must be one of {', '.join(ROLES)}"}), 400
    if User.query.filter((User.username == username) | (User.email == email)).first():
        return jsonify({"success": False, "message": "Username or email already exists"}), 409

    user = User(
        username=username,
        email=email,
        name=(data.get("name") or "").strip() or None,
        phone=(data.get("phone") or "").strip() or None,
        role=role,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return jsonify({"success": True, "user": user.to_dict()}), 201


@auth_bp.get("/me")
@jwt_required()
def me():
    user = current_user()
    if not user:
        return jsonify({"success": False, "message": "User not found"}), 404
    return jsonify({"success": True, "user": user.to_dict()})
