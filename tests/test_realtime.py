"""WebSocket handshake and room delivery, using the Flask-SocketIO test client."""
import pytest
from flask_jwt_extended import create_access_token

from extensions import socketio
from services import realtime


def _token(user):
    return create_access_token(identity=str(user.id), additional_claims={"roles": user.roles})


@pytest.fixture
def connect(app):
    clients = []

    def make():
        sc = socketio.test_client(app)
        clients.append(sc)
        return sc
    yield make
    for sc in clients:
        if sc.is_connected():
            sc.disconnect()


def _names(sc):
    return [m["name"] for m in sc.get_received()]


class TestAuthenticate:

    def test_valid_token(self, connect, counselor):
        sc = connect()
        sc.emit("authenticate", {"token": _token(counselor)})
        received = sc.get_received()
        assert received[-1]["name"] == "authenticated"
        assert received[-1]["args"][0] == {"user_id": str(counselor.id), "status": "connected"}

    def test_bad_token(self, connect, counselor):
        sc = connect()
        sc.emit("authenticate", {"token": "not-a-jwt"})
        received = sc.get_received()
        assert received[-1]["name"] == "error"
        assert received[-1]["args"][0] == {"message": "Invalid token"}

        realtime.send_notification(counselor.id, {"title": "hidden"})
        assert _names(sc) == []

    def test_missing_token(self, connect):
        sc = connect()
        sc.emit("authenticate", {})
        assert sc.get_received()[-1]["args"][0] == {"message": "No token provided"}


class TestRooms:

    def test_counselor_gets_user_and_counselor_pushes(self, connect, counselor):
        sc = connect()
        sc.emit("authenticate", {"token": _token(counselor)})
        sc.get_received()

        realtime.send_notification(counselor.id, {"title": "Call"})
        realtime.send_student_phase_update(5, counselor.id, {"type": "phase_change"})
        received = sc.get_received()
        assert [m["name"] for m in received] == ["notification", "student_phase_update"]
        assert received[1]["args"][0]["student_id"] == 5

    def test_marketing_has_no_counselor_room(self, connect, marketing):
        sc = connect()
        sc.emit("authenticate", {"token": _token(marketing)})
        sc.get_received()

        realtime.send_student_phase_update(5, marketing.id, {"type": "phase_change"})
        realtime.send_notification(marketing.id, {"title": "Lead update"})
        assert _names(sc) == ["notification"]

    def test_pushes_stay_in_their_room(self, connect, counselor, other_counselor):
        mine, theirs = connect(), connect()
        mine.emit("authenticate", {"token": _token(counselor)})
        theirs.emit("authenticate", {"token": _token(other_counselor)})
        mine.get_received()
        theirs.get_received()

        realtime.send_notification(other_counselor.id, {"title": "Yours"})
        assert _names(mine) == []
        assert _names(theirs) == ["notification"]

    def test_leave_room(self, connect, counselor):
        sc = connect()
        sc.emit("authenticate", {"token": _token(counselor)})
        sc.get_received()
        sc.emit("leave", {"room": realtime.counselor_room(counselor.id)})

        realtime.send_student_phase_update(5, counselor.id, {"type": "phase_change"})
        assert _names(sc) == []
