# routes/messages.py
from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from extensions import db
from models.message import MESSAGE_TYPES, Message
from models.user import User
from routes.auth import current_user_id
from services import realtime
from services.access import get_student
from services.errors import CRMError, NotFound
from services.parsing import paginate, parse_int

messages_bp = Blueprint("messages_bp", __name__, url_prefix="/api")


@messages_bp.get("/students/<int:sid>/messages")
@jwt_required()
def list_thread(sid):
    """Messages about one student that the caller sent or received, oldest first."""
    st = get_student(sid)
    uid = current_user_id()
    q = Message.query.filter(
        Message.student_id == st.id,
        or_(Message.sender_id == uid, Message.receiver_id == uid),
    )
    other = parse_int(request.args.get("with"), "with")
    if other:
        q = q.filter(or_(Message.sender_id == other, Message.receiver_id == other))
    result = paginate(q.order_by(Message.created_at.asc(), Message.id.asc()), default_size=50)
    return jsonify({"success": True, **result})


@messages_bp.post("/students/<int:sid>/messages")
@jwt_required()
def send_message(sid):
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    text = (data.get("message") or "").strip()
    if not text:
        raise CRMError("message is required")
    uid = current_user_id()
    receiver_id = parse_int(data.get("receiver_id"), "receiver_id")
    if receiver_id is None:
        # default: the student's counselor, or the marketing owner when the counselor writes
        receiver_id = st.marketing_owner_id if uid == st.counselor_id else st.counselor_id
    receiver = db.session.get(User, receiver_id) if receiver_id else None
    if not receiver or not receiver.is_active:
        raise CRMError("receiver_id must reference an active user")
    if receiver.id == uid:
        raise CRMError("Cannot send a message to yourself")
    mtype = (data.get("message_type") or "text").lower()
    if mtype not in MESSAGE_TYPES:
        raise CRMError(f"message_type must be one of {', '.join(MESSAGE_TYPES)}")

    msg = Message(student_id=st.id, sender_id=uid, receiver_id=receiver.id,
                  message=text, message_type=mtype)
    db.session.add(msg)
    db.session.commit()
    realtime.push_chat_message(msg)
    return jsonify({"success": True, "message": msg.to_dict()}), 201


@messages_bp.put("/messages/<int:mid>/read")
@jwt_required()
def mark_read(mid):
    msg = Message.query.filter_by(id=mid, receiver_id=current_user_id()).first()
    if not msg:
        raise NotFound("Message not found")
    if not msg.is_read:
        msg.is_read = True
        msg.read_at = datetime.utcnow()
        db.session.commit()
    return jsonify({"success": True, "message": msg.to_dict()})


@messages_bp.put("/students/<int:sid>/messages/read")
@jwt_required()
def mark_thread_read(sid):
    st = get_student(sid)
    updated = (
        Message.query.filter_by(student_id=st.id, receiver_id=current_user_id(), is_read=False)
        .update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
    )
    db.session.commit()
    return jsonify({"success": True, "updated": updated})


@messages_bp.get("/messages/unread-count")
@jwt_required()
def unread_messages():
    n = Message.query.filter_by(receiver_id=current_user_id(), is_read=False).count()
    return jsonify({"success": True, "count": n})
