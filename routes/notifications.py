# routes/notifications.py
from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from extensions import db
from models.notification import Notification
from routes.auth import current_user_id
from services.errors import NotFound
from services.notifications import unread_count
from services.parsing import paginate, parse_bool

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@jwt_required()
def list_notifications():
    uid = current_user_id()
    q = Notification.query.filter(Notification.user_id == uid)
    if parse_bool(request.args.get("unread"), False):
        q = q.filter(Notification.is_read.is_(False))
    if request.args.get("type"):
        q = q.filter(Notification.type == request.args["type"])
    result = paginate(q.order_by(Notification.created_at.desc(), Notification.id.desc()))
    return jsonify({"success": True, "unread": unread_count(uid), **result})


@notifications_bp.get("/unread-count")
@jwt_required()
def get_unread_count():
    return jsonify({"success": True, "count": unread_count(current_user_id())})


@notifications_bp.put("/<int:nid>/read")
@jwt_required()
def mark_read(nid):
    n = Notification.query.filter_by(id=nid, user_id=current_user_id()).first()
    if not n:
        raise NotFound("Notification not found")
    if not n.is_read:
        n.is_read = True
        n.read_at = datetime.utcnow()
        db.session.commit()
    return jsonify({"success": True, "notification": n.to_dict()})


@notifications_bp.put("/read-all")
@jwt_required()
def mark_all_read():
    updated = (
        Notification.query.filter_by(user_id=current_user_id(), is_read=False)
        .update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
    )
    db.session.commit()
    return jsonify({"success": True, "updated": updated})


@notifications_bp.delete("/<int:nid>")
@jwt_required()
def delete_notification(nid):
    n = Notification.query.filter_by(id=nid, user_id=current_user_id()).first()
    if not n:
        raise NotFound("Notification not found")
    db.session.delete(n)
    db.session.commit()
    return jsonify({"success": True, "message": "Notification deleted"})
