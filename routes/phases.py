# routes/phases.py
from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from routes.auth import current_user, role_required
from services import phase_service
from services import phases as P
from services.access import get_student

phases_bp = Blueprint("phases", __name__, url_prefix="/api")

# keys of the PUT body that are not selection / decision / payment data
_CONTROL_KEYS = {"current_phase", "phase", "country", "remarks"}


@phases_bp.put("/students/<int:sid>/phase")
@role_required("admin", "counselor")
def update_phase(sid):
    """
    Body::

      {"current_phase": "APPLICATION_SUBMISSION", "country": "UK",
       "remarks": "...", "selected_universities": [3, 7]}
    """
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    to_phase = data.get("current_phase") or data.get("phase")
    extra = {k: v for k, v in data.items() if k not in _CONTROL_KEYS}
    result = phase_service.change_phase(
        st, to_phase, current_user(),
        country=data.get("country"),
        remarks=data.get("remarks"),
        data=extra,
    )
    msg = "Phase updated" if result["changed"] else "Phase details saved"
    return jsonify({"success": True, "message": msg, **result})


@phases_bp.post("/students/<int:sid>/phase/reopen")
@role_required("admin", "counselor")
def reopen(sid):
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    phase_name = data.get("phase_name") or data.get("phase")
    result = phase_service.reopen_phase(st, phase_name, data.get("country"), current_user())
    return jsonify({"success": True, "message": f"Phase {phase_name.strip().upper()} reopened", **result})


@phases_bp.get("/students/<int:sid>/phase-metadata")
@jwt_required()
def get_phase_metadata(sid):
    st = get_student(sid)
    country = (request.args.get("country") or "").strip()
    if not country:
        return jsonify({"success": False, "message": "country is required"}), 400
    return jsonify({"success": True, **phase_service.phase_metadata(st, country)})


@phases_bp.get("/students/<int:sid>/pipeline")
@jwt_required()
def get_pipeline(sid):
    st = get_student(sid)
    snap = phase_service.pipeline_snapshot(st, request.args.get("country"))
    return jsonify({"success": True, **snap})


@phases_bp.get("/phases")
@jwt_required()
def list_phases():
    """Ordered steps (global, or for ``?country=``) with their required documents."""
    country = (request.args.get("country") or "").strip() or None
    steps = phase_service.steps_for(country)
    items = []
    for s in steps:
        docs = P.required_documents(s["key"], country, steps)
        items.append({
            "key": s["key"],
            "label": s["label"],
            "required_documents": P.document_details(docs),
            "description": P.phase_description(s["key"], country, steps),
            "transition": {k: v for k, v in P.transition_for(s["key"]).items() if v},
        })
    return jsonify({"success": True, "country": country, "phases": items})


@phases_bp.get("/students/<int:sid>/phase-requirements")
@jwt_required()
def phase_requirements(sid):
    """Which documents the student still lacks for ``?phase=`` (and ``?country=``)."""
    st = get_student(sid)
    phase = (request.args.get("phase") or "").strip().upper()
    country = (request.args.get("country") or "").strip() or None
    if not phase:
        return jsonify({"success": False, "message": "phase is required"}), 400
    steps = phase_service.steps_for(country)
    required = P.required_documents(phase, country, steps)
    missing = P.missing_documents(required, phase_service.uploaded_document_types(st.id))
    return jsonify({
        "success": True,
        "phase": phase,
        "country": country,
        "required_documents": required,
        "missing_documents": missing,
        "document_details": P.document_details(missing),
        "ready": not missing,
    })
