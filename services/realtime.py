# services/realtime.py
"""
WebSocket events and server-side push helpers.

Clients connect, then emit ``authenticate`` with ``{"token": <access JWT>}``;
the socket joins ``user:<id>`` and, for counselors, ``counselor:<id>``.
Importing this module registers the handlers on ``extensions.socketio``.
"""
import logging
from datetime import datetime

from flask import request
from flask_jwt_extended import decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_socketio import emit, join_room, leave_room
from jwt.exceptions import PyJWTError

from extensions import socketio

logger = logging.getLogger(__name__)


def user_room(user_id):
    return f"user:{user_id}"


def counselor_room(counselor_id):
    return f"counselor:{counselor_id}"


# ==================== SOCKET.IO EVENTS ====================

@socketio.on("connect")
def handle_connect():
    logger.debug("socket connected: %s", request.sid)


@socketio.on("disconnect")
def handle_disconnect():
    logger.debug("socket disconnected: %s", request.sid)


@socketio.on("authenticate")
def handle_authenticate(data):
    token = (data or {}).get("token")
    if not token:
        emit("error", {"message": "No token provided"})
        return
    try:
        claims = decode_token(token)
    except (JWTExtendedException, PyJWTError) as e:
        logger.info("socket auth rejected: %s", e)
        emit("error", {"message": "Invalid token"})
        return

    user_id = claims.get("sub")
    roles = claims.get("roles") or []
    join_room(user_room(user_id))
    if "counselor" in roles:
        join_room(counselor_room(user_id))

    logger.info("user %s authenticated for WebSocket", user_id)
    emit("authenticated", {"user_id": user_id, "status": "connected"})


@socketio.on("leave")
def handle_leave(data):
    room = (data or {}).get("room")
    if room:
        leave_room(room)


# ==================== SERVER-SIDE PUSH ====================

def _push(event, payload, room):
    """Emit to a room; a failed push is logged and never fails the caller."""
    try:
        socketio.emit(event, payload, to=room)
        return True
    except Exception as e:  # transport errors must not break the request
        logger.warning("push %s to %s failed: %s", event, room, e)
        return False


def send_notification(user_id, payload):
    return _push("notification", payload, user_room(user_id))


def send_student_phase_update(student_id, counselor_id, payload):
    body = {"student_id": student_id, "timestamp": datetime.utcnow().isoformat(), **payload}
    return _push("student_phase_update", body, counselor_room(counselor_id))


def broadcast_student_status(student, counselor_id):
    body = {
        "student_id": student.id,
        "is_paused": student.is_paused,
        "pause_reason": student.pause_reason,
        "status": student.status,
        "timestamp": datetime.utcnow().isoformat(),
    }
    return _push("student_status_updated", body, counselor_room(counselor_id))


def push_chat_message(message):
    return _push("new_message", message.to_dict(), user_room(message.receiver_id))
