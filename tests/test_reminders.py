"""Tests for reminder routes and the background trigger."""
from datetime import datetime, timedelta

import pytest

from extensions import db
from models.notification import Notification
from models.reminder import Reminder
from services import realtime
from services import reminder_scheduler
from services.reminder_scheduler import trigger_due_reminders


def _in(minutes):
    return (datetime.utcnow() + timedelta(minutes=minutes)).isoformat()


class TestReminderRoutes:

    def test_create(self, client, counselor, auth_headers, make_student):
        st = make_student()
        res = client.post("/api/reminders", headers=auth_headers(counselor), json={
            "student_id": st.id, "message": "Call about visa", "remind_at": _in(30),
        })
        assert res.status_code == 201
        body = res.get_json()["reminder"]
        assert body["status"] == "pending"
        assert body["title"] == f"Follow up: {st.full_name}"

    @pytest.mark.parametrize("payload,fragment", [
        ({"remind_at": "2099-01-01T00:00:00"}, "message"),
        ({"message": "x"}, "remind_at is required"),
        ({"message": "x", "remind_at": "2000-01-01T00:00:00"}, "future"),
    ])
    def test_validation(self, client, counselor, auth_headers, make_student, payload, fragment):
        st = make_student()
        res = client.post("/api/reminders", headers=auth_headers(counselor),
                          json={"student_id": st.id, **payload})
        assert res.status_code == 400
        assert fragment in res.get_json()["message"]

    def test_offset_is_converted_to_utc(self, client, counselor, auth_headers, make_student):
        st = make_student()
        when = (datetime.utcnow() + timedelta(hours=5)).replace(microsecond=0)
        local = (when + timedelta(hours=2)).isoformat() + "+02:00"
        body = client.post("/api/reminders", headers=auth_headers(counselor), json={
            "student_id": st.id, "message": "m", "remind_at": local,
        }).get_json()["reminder"]
        assert body["remind_at"] == when.isoformat()

    def test_student_must_be_own(self, client, counselor, other_counselor, auth_headers, make_student):
        st = make_student(owner=other_counselor)
        res = client.post("/api/reminders", headers=auth_headers(counselor), json={
            "student_id": st.id, "message": "m", "remind_at": _in(30),
        })
        assert res.status_code == 404

    def test_list_filter_cancel_delete(self, client, counselor, auth_headers, make_student):
        st = make_student()
        h = auth_headers(counselor)
        ids = [
            client.post("/api/reminders", headers=h, json={
                "student_id": st.id, "message": f"m{i}", "remind_at": _in(10 + i),
            }).get_json()["reminder"]["id"]
            for i in range(3)
        ]
        assert client.post(f"/api/reminders/{ids[0]}/cancel", headers=h).status_code == 200
        assert client.post(f"/api/reminders/{ids[0]}/cancel", headers=h).status_code == 400

        pending = client.get("/api/reminders?status=pending", headers=h).get_json()
        assert [r["id"] for r in pending["items"]] == ids[1:]
        assert client.get("/api/reminders?status=bogus", headers=h).status_code == 400

        assert client.delete(f"/api/reminders/{ids[1]}", headers=h).status_code == 200
        assert client.get("/api/reminders", headers=h).get_json()["total"] == 2

    def test_update_pending_only(self, client, counselor, auth_headers, make_student):
        st = make_student()
        h = auth_headers(counselor)
        rid = client.post("/api/reminders", headers=h, json={
            "student_id": st.id, "message": "m", "remind_at": _in(10),
        }).get_json()["reminder"]["id"]
        res = client.put(f"/api/reminders/{rid}", headers=h, json={"message": "changed"})
        assert res.get_json()["reminder"]["message"] == "changed"
        client.post(f"/api/reminders/{rid}/cancel", headers=h)
        assert client.put(f"/api/reminders/{rid}", headers=h, json={"message": "again"}).status_code == 400

    def test_not_visible_to_other_counselor(self, client, counselor, other_counselor, auth_headers,
                                            make_student):
        st = make_student()
        rid = client.post("/api/reminders", headers=auth_headers(counselor), json={
            "student_id": st.id, "message": "m", "remind_at": _in(10),
        }).get_json()["reminder"]["id"]
        assert client.get(f"/api/reminders/{rid}", headers=auth_headers(other_counselor)).status_code == 404


class TestTrigger:

    def _reminder(self, student, counselor, remind_at, status="pending"):
        r = Reminder(counselor_id=counselor.id, student_id=student.id, message="Call back",
                     remind_at=remind_at, status=status)
        db.session.add(r)
        db.session.commit()
        return r

    def test_due_reminders_fire_once(self, app, counselor, make_student, monkeypatch):
        pushed = []
        monkeypatch.setattr(realtime, "send_notification", lambda uid, payload: pushed.append((uid, payload)))
        st = make_student()
        now = datetime.utcnow()
        due = self._reminder(st, counselor, now - timedelta(minutes=1))
        later = self._reminder(st, counselor, now + timedelta(hours=1))
        self._reminder(st, counselor, now - timedelta(minutes=5), status="cancelled")

        assert trigger_due_reminders(now) == 1
        assert db.session.get(Reminder, due.id).status == "triggered"
        assert db.session.get(Reminder, due.id).triggered_at == now
        assert db.session.get(Reminder, later.id).status == "pending"

        n = Notification.query.filter_by(user_id=counselor.id).one()
        assert n.type == "reminder"
        assert n.priority == "high"
        assert n.meta["reminder_id"] == due.id
        assert pushed and pushed[0][0] == counselor.id

        assert trigger_due_reminders(now) == 0

    def test_nothing_due(self, app):
        assert trigger_due_reminders() == 0


class TestSchedulerLifecycle:

    def test_start_registers_shutdown(self, app, monkeypatch):
        registered = []
        monkeypatch.setattr(reminder_scheduler.atexit, "register", registered.append)
        sched = reminder_scheduler.start_scheduler(app)
        try:
            assert sched.running
            assert sched.get_job(reminder_scheduler.JOB_ID) is not None
            assert registered == [reminder_scheduler.shutdown_scheduler]
        finally:
            reminder_scheduler.shutdown_scheduler()
        assert not sched.running

    def test_shutdown_when_stopped_is_noop(self):
        reminder_scheduler.shutdown_scheduler()
        assert not reminder_scheduler.scheduler.running
