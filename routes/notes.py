# routes/notes.py
from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from extensions import db
from models.activity import Activity
from models.note import NOTE_TYPES, Note
from routes.auth import current_user_id
from services.access import get_student
from services.errors import CRMError, Forbidden, NotFound
from services.parsing import parse_bool

notes_bp = Blueprint("notes", __name__, url_prefix="/api")


def _note_type(v):
    t = (v or "GENERAL").strip().upper()
    if t not in NOTE_TYPES:
        raise CRMError(f"type must be one of {', '.join(NOTE_TYPES)}")
    return t


def _own_note(note_id):
    note = db.session.get(Note, note_id)
    if not note:
        raise NotFound("Note not found")
    get_student(note.student_id)
    if note.author_id != current_user_id():
        raise Forbidden("Only the author can change this note")
    return note


@notes_bp.get("/students/<int:sid>/notes")
@jwt_required()
def list_notes(sid):
    # private notes are only returned to their author
    st = get_student(sid)
    uid = current_user_id()
    q = Note.query.filter(Note.student_id == st.id) \
        .filter(or_(Note.is_private.is_(False), Note.author_id == uid))
    if request.args.get("type"):
        q = q.filter(Note.type == request.args["type"].upper())
    notes = q.order_by(Note.created_at.desc(), Note.id.desc()).all()
    return jsonify({"success": True, "items": [n.to_dict() for n in notes]})


@notes_bp.post("/students/<int:sid>/notes")
@jwt_required()
def create_note(sid):
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    content = (data.get("content") or "").strip()
    if not content:
        raise CRMError("content is required")
    uid = current_user_id()
    note = Note(
        student_id=st.id,
        author_id=uid,
        type=_note_type(data.get("type")),
        content=content,
        is_private=parse_bool(data.get("is_private"), False),
    )
    db.session.add(note)
    if not note.is_private:
        Activity.log("NOTE_ADDED", f"{note.type.title()} note added", st.id, uid)
    db.session.commit()
    return jsonify({"success": True, "note": note.to_dict()}), 201


@notes_bp.put("/notes/<int:note_id>")
@jwt_required()
def update_note(note_id):
    note = _own_note(note_id)
    data = request.get_json(silent=True) or {}
    if "content" in data:
        content = (data["content"] or "").strip()
        if not content:
            raise CRMError("content cannot be empty")
        note.content = content
    if "type" in data:
        note.type = _note_type(data["type"])
    if "is_private" in data:
        note.is_private = parse_bool(data["is_private"], False)
    db.session.commit()
    return jsonify({"success": True, "note": note.to_dict()})


@notes_bp.delete("/notes/<int:note_id>")
@jwt_required()
def delete_note(note_id):
    note = _own_note(note_id)
    db.session.delete(note)
    db.session.commit()
    return jsonify({"success": True, "message": "Note deleted"})
