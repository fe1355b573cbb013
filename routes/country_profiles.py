# routes/country_profiles.py
from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import func

from extensions import db
from models.application import VISA_STATUSES, Application
from models.country_profile import CountryProfile, PhaseMetadata
from models.university import University
from services.access import get_student
from services.cache import invalidate_counselor
from services.errors import Conflict, CRMError, NotFound
from services.parsing import parse_bool, parse_int
from services.phase_service import steps_for

country_profiles_bp = Blueprint("country_profiles", __name__, url_prefix="/api/students")


def _app_counters(student_id):
    """country -> {total, submitted, accepted, rejected, pending} from applications."""
    rows = (
        db.session.query(University.country, Application.status, func.count(Application.id))
        .join(University, Application.university_id == University.id)
        .filter(Application.student_id == student_id)
        .group_by(University.country, Application.status)
        .all()
    )
    out = {}
    for country, status, n in rows:
        c = out.setdefault(country, {"total": 0, "submitted": 0, "accepted": 0, "rejected": 0, "pending": 0})
        c["total"] += n
        if status in ("SUBMITTED", "UNDER_REVIEW"):
            c["submitted"] += n
        elif status in ("ACCEPTED", "CONDITIONAL_OFFER"):
            c["accepted"] += n
        elif status == "REJECTED":
            c["rejected"] += n
        elif status == "PENDING":
            c["pending"] += n
    return out


def _empty_counters():
    return {"total": 0, "submitted": 0, "accepted": 0, "rejected": 0, "pending": 0}


def _new_profile(student_id, country, data=None):
    data = data or {}
    steps = steps_for(country)
    first = steps[0]["key"] if steps else "DOCUMENT_COLLECTION"
    profile = CountryProfile(
        student_id=student_id,
        country=country,
        current_phase=first,
        visa_required=parse_bool(data.get("visa_required"), True),
        preferred_country=parse_bool(data.get("preferred_country"), False),
        country_ranking=parse_int(data.get("country_ranking"), "country_ranking"),
        notes=data.get("notes"),
        last_updated=datetime.utcnow(),
    )
    db.session.add(profile)
    db.session.add(PhaseMetadata(
        student_id=student_id, country=country, phase_name=first, status="Current",
    ))
    return profile


@country_profiles_bp.get("/<int:sid>/country-profiles")
@jwt_required()
def list_profiles(sid):
    st = get_student(sid)
    counters = _app_counters(st.id)
    profiles = (
        CountryProfile.query.filter_by(student_id=st.id)
        .order_by(CountryProfile.preferred_country.desc(),
                  CountryProfile.country_ranking.asc(),
                  CountryProfile.country.asc())
        .all()
    )
    items = []
    for p in profiles:
        d = p.to_dict()
        d["applications"] = counters.get(p.country, _empty_counters())
        items.append(d)
    return jsonify({"success": True, "items": items})


@country_profiles_bp.post("/<int:sid>/country-profiles")
@jwt_required()
def create_profile(sid):
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    country = (data.get("country") or "").strip()
    if not country:
        raise CRMError("country is required")
    if CountryProfile.query.filter_by(student_id=st.id, country=country).first():
        raise Conflict(f"Country profile for {country} already exists")
    profile = _new_profile(st.id, country, data)
    db.session.commit()
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "country_profile": profile.to_dict()}), 201


@country_profiles_bp.post("/<int:sid>/country-profiles/auto-create")
@jwt_required()
def auto_create_profiles(sid):
    """Create profiles for ``countries`` (default: the student's target countries)."""
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    countries = data.get("countries")
    if countries is None:
        countries = st.target_country_list
    if isinstance(countries, str):
        countries = countries.split(",")
    countries = list(dict.fromkeys(c.strip() for c in countries if c and c.strip()))
    if not countries:
        raise CRMError("No countries to create profiles for")

    existing = {
        p.country for p in CountryProfile.query.filter(
            CountryProfile.student_id == st.id, CountryProfile.country.in_(countries)
        ).all()
    }
    created = []
    for country in countries:
        if country in existing:
            continue
        created.append(_new_profile(st.id, country))
    db.session.commit()
    if created:
        invalidate_counselor(st.counselor_id)
    return jsonify({
        "success": True,
        "created": [p.to_dict() for p in created],
        "existing": sorted(existing),
        "message": f"Created {len(created)} profile(s), {len(existing)} already existed",
    }), 201 if created else 200


@country_profiles_bp.put("/<int:sid>/country-profiles/<int:pid>")
@jwt_required()
def update_profile(sid, pid):
    st = get_student(sid)
    profile = CountryProfile.query.filter_by(id=pid, student_id=st.id).first()
    if not profile:
        raise NotFound("Country profile not found")
    data = request.get_json(silent=True) or {}
    if "current_phase" in data:
        raise CRMError("current_phase cannot be changed here; use the phase endpoint")
    if "visa_status" in data:
        vs = (data["visa_status"] or "").upper()
        if vs not in VISA_STATUSES:
            raise CRMError(f"visa_status must be one of {', '.join(VISA_STATUSES)}")
        profile.visa_status = vs
    if "visa_required" in data:
        profile.visa_required = parse_bool(data["visa_required"], True)
    if "preferred_country" in data:
        profile.preferred_country = parse_bool(data["preferred_country"], False)
    if "country_ranking" in data:
        profile.country_ranking = parse_int(data["country_ranking"], "country_ranking")
    if "notes" in data:
        profile.notes = data["notes"]
    profile.last_updated = datetime.utcnow()
    db.session.commit()
    return jsonify({"success": True, "country_profile": profile.to_dict()})


@country_profiles_bp.delete("/<int:sid>/country-profiles/<int:pid>")
@jwt_required()
def delete_profile(sid, pid):
    st = get_student(sid)
    profile = CountryProfile.query.filter_by(id=pid, student_id=st.id).first()
    if not profile:
        raise NotFound("Country profile not found")
    PhaseMetadata.query.filter_by(student_id=st.id, country=profile.country) \
        .delete(synchronize_session=False)
    db.session.delete(profile)
    db.session.commit()
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "message": "Country profile deleted"})
