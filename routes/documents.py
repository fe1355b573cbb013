# routes/documents.py
import logging
import os
from datetime import date, timedelta

from flask import Blueprint, jsonify, request, send_file
from flask_jwt_extended import jwt_required

from extensions import db
from models.activity import Activity
from models.document import DOCUMENT_PRIORITIES, DOCUMENT_STATUSES, DOCUMENT_TYPES, Document
from models.student import Student
from routes.auth import current_user_id
from services.access import get_student, scope_students
from services.cache import invalidate_counselor
from services.errors import CRMError, NotFound
from services.parsing import paginate, parse_bool, parse_date, parse_int
from services.phases import DOCUMENT_DESCRIPTIONS
from services.storage import absolute_path, delete_file, save_upload

logger = logging.getLogger(__name__)

documents_bp = Blueprint("documents", __name__, url_prefix="/api")

META_TEXT = ["description", "issuing_authority", "document_number", "country_of_issue", "remarks"]
META_DATES = ["expiry_date", "issue_date"]


def _apply_meta(doc, data):
    for f in META_TEXT:
        if f in data:
            setattr(doc, f, (data[f] or "").strip() or None)
    for f in META_DATES:
        if f in data:
            setattr(doc, f, parse_date(data[f], f))
    if "is_required" in data:
        doc.is_required = parse_bool(data["is_required"], True)
    if "priority" in data and data["priority"]:
        prio = str(data["priority"]).upper()
        if prio not in DOCUMENT_PRIORITIES:
            raise CRMError(f"priority must be one of {', '.join(DOCUMENT_PRIORITIES)}")
        doc.priority = prio
    if doc.issue_date and doc.expiry_date and doc.expiry_date < doc.issue_date:
        raise CRMError("expiry_date must not be before issue_date")


def _load(doc_id):
    doc = db.session.get(Document, doc_id)
    if not doc:
        raise NotFound("Document not found")
    get_student(doc.student_id)
    return doc


def _filter(q):
    dtype = (request.args.get("type") or "").strip().upper()
    if dtype:
        q = q.filter(Document.type == dtype)
    status = (request.args.get("status") or "").strip().upper()
    if status:
        q = q.filter(Document.status == status)
    if not parse_bool(request.args.get("include_history"), False):
        q = q.filter(Document.is_latest.is_(True))
    within = parse_int(request.args.get("expiring_within"), "expiring_within")
    if within is not None:
        today = date.today()
        q = q.filter(Document.expiry_date.isnot(None),
                     Document.expiry_date <= today + timedelta(days=within))
    return q


@documents_bp.get("/documents/types")
@jwt_required()
def document_types():
    return jsonify({
        "success": True,
        "types": [{"key": t, "description": DOCUMENT_DESCRIPTIONS.get(t, t.replace("_", " ").title())}
                  for t in DOCUMENT_TYPES],
        "statuses": DOCUMENT_STATUSES,
        "priorities": DOCUMENT_PRIORITIES,
    })


@documents_bp.get("/documents")
@jwt_required()
def list_all_documents():
    """Documents across every student the caller can see."""
    visible = scope_students(db.session.query(Student.id))
    q = _filter(Document.query.filter(Document.student_id.in_(visible)))
    sid = request.args.get("student_id", type=int)
    if sid:
        q = q.filter(Document.student_id == sid)
    return jsonify({"success": True, **paginate(q.order_by(Document.created_at.desc(), Document.id.desc()))})


@documents_bp.get("/students/<int:sid>/documents")
@jwt_required()
def list_student_documents(sid):
    st = get_student(sid)
    q = _filter(Document.query.filter_by(student_id=st.id))
    docs = q.order_by(Document.type.asc(), Document.version.desc()).all()
    return jsonify({"success": True, "items": [d.to_dict() for d in docs]})


@documents_bp.post("/students/<int:sid>/documents")
@jwt_required()
def upload_document(sid):
    """multipart/form-data: file, type, [description, expiry_date, issue_date, ...]"""
    st = get_student(sid)
    form = request.form
    dtype = (form.get("type") or "").strip().upper()
    if dtype not in DOCUMENT_TYPES:
        raise CRMError("type is missing or not a known document type")

    rel, original, mime, size = save_upload(request.files.get("file"), st.id)
    uid = current_user_id()
    try:
        previous = (
            Document.query.filter_by(student_id=st.id, type=dtype, is_latest=True)
            .order_by(Document.version.desc())
            .first()
        )
        doc = Document(
            student_id=st.id,
            type=dtype,
            name=(form.get("name") or "").strip() or original,
            path=rel,
            status="PENDING",
            uploaded_by=uid,
            mime_type=mime,
            size=size,
            version=1,
            is_latest=True,
        )
        if previous:
            Document.query.filter_by(student_id=st.id, type=dtype, is_latest=True) \
                .update({"is_latest": False}, synchronize_session=False)
            doc.version = previous.version + 1
        _apply_meta(doc, form)
        db.session.add(doc)
        Activity.log("DOCUMENT_UPLOAD", f"{dtype} uploaded (v{doc.version})", st.id, uid,
                     document_type=dtype, version=doc.version)
        db.session.commit()
    except Exception:
        db.session.rollback()
        delete_file(rel)
        raise

    logger.info("document %s v%s uploaded for student %s", dtype, doc.version, st.id)
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "document": doc.to_dict()}), 201


@documents_bp.get("/documents/<int:doc_id>")
@jwt_required()
def get_document(doc_id):
    return jsonify({"success": True, "document": _load(doc_id).to_dict()})


@documents_bp.put("/documents/<int:doc_id>")
@jwt_required()
def update_document(doc_id):
    doc = _load(doc_id)
    data = request.get_json(silent=True) or {}
    old_status = doc.status
    if "status" in data:
        status = (data["status"] or "").upper()
        if status not in DOCUMENT_STATUSES:
            raise CRMError(f"status must be one of {', '.join(DOCUMENT_STATUSES)}")
        doc.status = status
    if "name" in data and (data["name"] or "").strip():
        doc.name = data["name"].strip()
    _apply_meta(doc, data)
    if doc.status != old_status:
        Activity.log("DOCUMENT_UPDATED", f"{doc.type} {old_status} -> {doc.status}",
                     doc.student_id, current_user_id(), document_id=doc.id)
    db.session.commit()
    invalidate_counselor(doc.student.counselor_id)
    return jsonify({"success": True, "document": doc.to_dict()})


@documents_bp.get("/documents/<int:doc_id>/download")
@jwt_required()
def download_document(doc_id):
    doc = _load(doc_id)
    path = absolute_path(doc.path)
    if not os.path.isfile(path):
        logger.warning("document %s file missing at %s", doc.id, doc.path)
        raise NotFound("Document file missing")
    return send_file(
        path,
        mimetype=doc.mime_type or "application/octet-stream",
        as_attachment=True,
        download_name=doc.name,
    )


@documents_bp.delete("/documents/<int:doc_id>")
@jwt_required()
def delete_document(doc_id):
    doc = _load(doc_id)
    st = doc.student
    path, was_latest = doc.path, doc.is_latest
    db.session.delete(doc)
    db.session.flush()
    if was_latest:
        # previous version becomes current again
        prev = (
            Document.query.filter_by(student_id=st.id, type=doc.type)
            .order_by(Document.version.desc())
            .first()
        )
        if prev:
            prev.is_latest = True
    Activity.log("DOCUMENT_DELETED", f"{doc.type} v{doc.version} deleted", st.id, current_user_id())
    db.session.commit()
    delete_file(path)
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "message": "Document deleted"})
