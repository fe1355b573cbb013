# routes/universities.py
from decimal import Decimal, InvalidOperation

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from extensions import db
from models.application import Application
from models.university import University
from routes.auth import role_required
from services.errors import Conflict, CRMError
from services.parsing import paginate, parse_bool, parse_int

universities_bp = Blueprint("universities", __name__, url_prefix="/api/universities")

TEXT_FIELDS = ["city", "website", "description", "requirements"]


def _apply(u, data):
    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise CRMError("name cannot be empty")
        u.name = name
    if "country" in data:
        country = (data["country"] or "").strip()
        if not country:
            raise CRMError("country cannot be empty")
        u.country = country
    for f in TEXT_FIELDS:
        if f in data:
            setattr(u, f, data[f])
    if "ranking" in data:
        u.ranking = parse_int(data["ranking"], "ranking")
    if "acceptance_rate" in data:
        v = data["acceptance_rate"]
        if v in (None, ""):
            u.acceptance_rate = None
        else:
            try:
                rate = Decimal(str(v))
            except InvalidOperation:
                raise CRMError("acceptance_rate must be a number")
            if not 0 <= rate <= 100:
                raise CRMError("acceptance_rate must be between 0 and 100")
            u.acceptance_rate = rate
    if "active" in data:
        u.active = parse_bool(data["active"], True)


@universities_bp.get("")
@jwt_required()
def list_universities():
    q = University.query
    if not parse_bool(request.args.get("include_inactive"), False):
        q = q.filter(University.active.is_(True))
    kw = (request.args.get("search") or request.args.get("q") or "").strip()
    if kw:
        like = f"%{kw}%"
        q = q.filter(or_(University.name.ilike(like), University.city.ilike(like)))
    country = (request.args.get("country") or "").strip()
    if country:
        q = q.filter(University.country == country)
    q = q.order_by(University.ranking.is_(None), University.ranking.asc(), University.name.asc())
    return jsonify({"success": True, **paginate(q, default_size=50)})


@universities_bp.get("/<int:uid>")
@jwt_required()
def get_university(uid):
    return jsonify({"success": True, "university": University.query.get_or_404(uid).to_dict()})


@universities_bp.post("")
@role_required("admin")
def create_university():
    data = request.get_json(silent=True) or {}
    if not (data.get("name") or "").strip() or not (data.get("country") or "").strip():
        raise CRMError("name and country are required")
    if University.query.filter_by(name=data["name"].strip()).first():
        raise Conflict("A university with this name already exists")
    u = University()
    _apply(u, data)
    db.session.add(u)
    db.session.commit()
    return jsonify({"success": True, "university": u.to_dict()}), 201


@universities_bp.put("/<int:uid>")
@role_required("admin")
def update_university(uid):
    u = University.query.get_or_404(uid)
    data = request.get_json(silent=True) or {}
    if "name" in data:
        other = University.query.filter(University.name == (data["name"] or "").strip(),
                                        University.id != u.id).first()
        if other:
            raise Conflict("A university with this name already exists")
    _apply(u, data)
    db.session.commit()
    return jsonify({"success": True, "university": u.to_dict()})


@universities_bp.delete("/<int:uid>")
@role_required("admin")
def delete_university(uid):
    """Hard delete when unused; universities with applications are deactivated instead."""
    u = University.query.get_or_404(uid)
    if Application.query.filter_by(university_id=u.id).first():
        u.active = False
        db.session.commit()
        return jsonify({"success": True, "message": "University has applications; deactivated",
                        "university": u.to_dict()})
    db.session.delete(u)
    db.session.commit()
    return jsonify({"success": True, "message": "University deleted"})
