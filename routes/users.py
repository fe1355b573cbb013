# routes/users.py
from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from extensions import db
from models.student import Student
from models.user import ROLES, User
from routes.auth import current_user, current_user_id, role_required
from services.errors import Conflict, CRMError, NotFound
from services.parsing import paginate, parse_bool

users_bp = Blueprint("users_bp", __name__, url_prefix="/api/users")


# ========== staff accounts (admin) ==========
@users_bp.get("")
@role_required("admin")
def list_users():
    q = User.query
    role = (request.args.get("role") or "").strip().lower()
    if role:
        q = q.filter(User.role == role)
    active = parse_bool(request.args.get("active"))
    if active is not None:
        q = q.filter(User.is_active.is_(active))
    kw = (request.args.get("search") or "").strip()
    if kw:
        like = f"%{kw}%"
        q = q.filter(or_(User.username.ilike(like), User.email.ilike(like), User.name.ilike(like)))
    return jsonify({"success": True, **paginate(q.order_by(User.id.desc()))})


@users_bp.get("/counselors")
@jwt_required()
def list_counselors():
    """Active counselors, for assignment pickers."""
    rows = (
        User.query.filter_by(role="counselor", is_active=True)
        .order_by(User.name.asc(), User.username.asc())
        .all()
    )
    return jsonify({"success": True, "items": [
        {"id": u.id, "username": u.username, "name": u.name, "email": u.email} for u in rows
    ]})


@users_bp.put("/<int:uid>")
@role_required("admin")
def update_user(uid):
    u = db.session.get(User, uid)
    if not u:
        raise NotFound("User not found")
    data = request.get_json(silent=True) or {}
    if "email" in data:
        email = (data["email"] or "").strip().lower() or None
        if email and User.query.filter(User.email == email, User.id != u.id).first():
            raise Conflict("Email already in use")
        u.email = email
    for f in ("name", "phone", "avatar"):
        if f in data:
            setattr(u, f, (data[f] or "").strip() or None)
    if "role" in data:
        role = (data["role"] or "").strip().lower()
        if role not in ROLES:
            raise CRMError(f"role must be one of {', '.join(ROLES)}")
        if u.id == current_user_id() and role != "admin":
            raise CRMError("You cannot remove your own admin role")
        u.role = role
    if "is_active" in data:
        active = parse_bool(data["is_active"], True)
        if u.id == current_user_id() and not active:
            raise CRMError("You cannot deactivate yourself")
        u.is_active = active
    if data.get("password"):
        if len(data["password"]) < 8:
            raise CRMError("Password must be at least 8 characters")
        u.set_password(data["password"])
    db.session.commit()
    return jsonify({"success": True, "user": u.to_dict()})


@users_bp.delete("/<int:uid>")
@role_required("admin")
def delete_user(uid):
    """Users that still own students are deactivated rather than removed."""
    u = db.session.get(User, uid)
    if not u:
        raise NotFound("User not found")
    if u.id == current_user_id():
        raise CRMError("You cannot delete yourself")
    owns = Student.query.filter(
        or_(Student.counselor_id == u.id, Student.marketing_owner_id == u.id)
    ).first()
    if owns:
        u.is_active = False
        db.session.commit()
        return jsonify({"success": True, "message": "User owns students; deactivated", "user": u.to_dict()})
    db.session.delete(u)
    db.session.commit()
    return jsonify({"success": True, "message": "User deleted"})


# ========== self service ==========
@users_bp.put("/me/password")
@jwt_required()
def change_password():
    u = current_user()
    if not u:
        raise NotFound("User not found")
    data = request.get_json(silent=True) or {}
    if not u.check_password(data.get("old_password") or ""):
        raise CRMError("Old password is incorrect", status=401)
    new = data.get("new_password") or ""
    if len(new) < 8:
        raise CRMError("Password must be at least 8 characters")
    u.set_password(new)
    db.session.commit()
    return jsonify({"success": True, "message": "Password updated"})
