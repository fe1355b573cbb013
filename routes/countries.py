# routes/countries.py
from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from extensions import db
from models.country import Country, CountryProcess
from routes.auth import role_required
from services.errors import Conflict, CRMError
from services.parsing import parse_bool
from services.phases import normalize_steps

countries_bp = Blueprint("countries", __name__, url_prefix="/api")

PROCESS_JSON_FIELDS = [
    "required_documents", "intake_terms", "visa_requirements", "language_requirements",
    "financial_requirements", "application_fees", "processing_time",
]


# ========== Country ==========

@countries_bp.get("/countries")
@jwt_required()
def list_countries():
    q = Country.query
    if not parse_bool(request.args.get("include_inactive"), False):
        q = q.filter(Country.is_active.is_(True))
    return jsonify({"success": True, "items": [c.to_dict() for c in q.order_by(Country.name.asc()).all()]})


@countries_bp.post("/countries")
@role_required("admin")
def create_country():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    code = (data.get("code") or "").strip().upper()
    if not name or not code:
        raise CRMError("name and code are required")
    if len(code) > 3:
        raise CRMError("code must be at most 3 characters")
    if Country.query.filter((Country.name == name) | (Country.code == code)).first():
        raise Conflict("Country already exists")
    c = Country(name=name, code=code, region=data.get("region"),
                is_active=parse_bool(data.get("is_active"), True))
    db.session.add(c)
    db.session.commit()
    return jsonify({"success": True, "country": c.to_dict()}), 201


@countries_bp.put("/countries/<int:cid>")
@role_required("admin")
def update_country(cid):
    c = Country.query.get_or_404(cid)
    data = request.get_json(silent=True) or {}
    if "name" in data:
        c.name = (data["name"] or "").strip() or c.name
    if "code" in data:
        c.code = (data["code"] or "").strip().upper() or c.code
    if "region" in data:
        c.region = data["region"]
    if "is_active" in data:
        c.is_active = parse_bool(data["is_active"], True)
    db.session.commit()
    return jsonify({"success": True, "country": c.to_dict()})


@countries_bp.delete("/countries/<int:cid>")
@role_required("admin")
def delete_country(cid):
    c = Country.query.get_or_404(cid)
    db.session.delete(c)
    db.session.commit()
    return jsonify({"success": True, "message": "Country deleted"})


# ========== CountryProcess ==========

def _apply_process(p, data):
    if "steps" in data:
        steps = normalize_steps(data.get("steps"))
        if not steps:
            raise CRMError("steps must be a non-empty list of phase keys or {key, label} objects")
        keys = [s["key"] for s in steps]
        if len(keys) != len(set(keys)):
            raise CRMError("steps contain duplicate keys")
        p.steps = steps
    for f in PROCESS_JSON_FIELDS:
        if f in data:
            setattr(p, f, data[f])
    if "special_notes" in data:
        p.special_notes = data["special_notes"]
    if "is_active" in data:
        p.is_active = parse_bool(data["is_active"], True)


@countries_bp.get("/country-processes")
@jwt_required()
def list_processes():
    q = CountryProcess.query
    if not parse_bool(request.args.get("include_inactive"), False):
        q = q.filter(CountryProcess.is_active.is_(True))
    return jsonify({"success": True, "items": [p.to_dict() for p in q.order_by(CountryProcess.country).all()]})


@countries_bp.get("/country-processes/<string:code>")
@jwt_required()
def get_process(code):
    p = CountryProcess.query.filter(
        (CountryProcess.country_code == code.upper()) | (CountryProcess.country == code)
    ).first_or_404()
    return jsonify({"success": True, "process": p.to_dict()})


@countries_bp.post("/country-processes")
@role_required("admin")
def create_process():
    data = request.get_json(silent=True) or {}
    country = (data.get("country") or "").strip()
    code = (data.get("country_code") or "").strip().upper()
    if not country or not code:
        raise CRMError("country and country_code are required")
    if "steps" not in data:
        raise CRMError("steps are required")
    if CountryProcess.query.filter(
        (CountryProcess.country == country) | (CountryProcess.country_code == code)
    ).first():
        raise Conflict("A process for this country already exists")
    p = CountryProcess(country=country, country_code=code)
    _apply_process(p, data)
    db.session.add(p)
    db.session.commit()
    return jsonify({"success": True, "process": p.to_dict()}), 201


@countries_bp.put("/country-processes/<int:pid>")
@role_required("admin")
def update_process(pid):
    p = CountryProcess.query.get_or_404(pid)
    _apply_process(p, request.get_json(silent=True) or {})
    db.session.commit()
    return jsonify({"success": True, "process": p.to_dict()})


@countries_bp.delete("/country-processes/<int:pid>")
@role_required("admin")
def delete_process(pid):
    p = CountryProcess.query.get_or_404(pid)
    db.session.delete(p)
    db.session.commit()
    return jsonify({"success": True, "message": "Country process deleted"})
