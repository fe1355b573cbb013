"""Route tests for counselor tasks and student notes."""
from datetime import datetime, timedelta

from models.activity import Activity


def _due(hours):
    return (datetime.utcnow() + timedelta(hours=hours)).isoformat()


class TestTasks:

    def test_create_and_list(self, client, counselor, auth_headers, make_student):
        st = make_student()
        h = auth_headers(counselor)
        res = client.post("/api/tasks", headers=h, json={
            "title": "Collect transcript", "due_date": _due(24), "student_id": st.id, "priority": "high",
        })
        assert res.status_code == 201
        task = res.get_json()["task"]
        assert task["priority"] == "HIGH"
        assert task["type"] == "GENERAL"

        client.post("/api/tasks", headers=h, json={"title": "Late one", "due_date": _due(-2)})
        overdue = client.get("/api/tasks?overdue=1", headers=h).get_json()
        assert [t["title"] for t in overdue["items"]] == ["Late one"]

    def test_validation(self, client, counselor, auth_headers):
        h = auth_headers(counselor)
        assert client.post("/api/tasks", headers=h, json={"due_date": _due(1)}).status_code == 400
        assert client.post("/api/tasks", headers=h, json={"title": "x"}).status_code == 400
        assert client.post("/api/tasks", headers=h,
                           json={"title": "x", "due_date": _due(1), "priority": "ASAP"}).status_code == 400

    def test_toggle_logs_completion(self, client, counselor, auth_headers, make_student):
        st = make_student()
        h = auth_headers(counselor)
        tid = client.post("/api/tasks", headers=h, json={
            "title": "Book IELTS", "due_date": _due(5), "student_id": st.id,
        }).get_json()["task"]["id"]

        done = client.post(f"/api/tasks/{tid}/toggle", headers=h).get_json()["task"]
        assert done["completed"] is True
        assert done["completed_at"]
        assert Activity.query.filter_by(student_id=st.id, type="TASK_COMPLETED").count() == 1

        undone = client.post(f"/api/tasks/{tid}/toggle", headers=h).get_json()["task"]
        assert undone["completed"] is False
        assert undone["completed_at"] is None

    def test_owner_only(self, client, counselor, other_counselor, admin, auth_headers):
        tid = client.post("/api/tasks", headers=auth_headers(counselor), json={
            "title": "Mine", "due_date": _due(5),
        }).get_json()["task"]["id"]
        assert client.get(f"/api/tasks/{tid}", headers=auth_headers(other_counselor)).status_code == 404
        assert client.get(f"/api/tasks/{tid}", headers=auth_headers(admin)).status_code == 200
        assert client.delete(f"/api/tasks/{tid}", headers=auth_headers(counselor)).status_code == 200


class TestNotes:

    def test_private_notes_hidden_from_others(self, client, admin, counselor, auth_headers, make_student):
        st = make_student()
        h = auth_headers(counselor)
        client.post(f"/api/students/{st.id}/notes", headers=h, json={"content": "Public note"})
        client.post(f"/api/students/{st.id}/notes", headers=h,
                    json={"content": "Private note", "is_private": True, "type": "financial"})

        mine = client.get(f"/api/students/{st.id}/notes", headers=h).get_json()["items"]
        assert len(mine) == 2
        theirs = client.get(f"/api/students/{st.id}/notes", headers=auth_headers(admin)).get_json()["items"]
        assert [n["content"] for n in theirs] == ["Public note"]
        assert Activity.query.filter_by(student_id=st.id, type="NOTE_ADDED").count() == 1

    def test_only_author_edits(self, client, admin, counselor, auth_headers, make_student):
        st = make_student()
        nid = client.post(f"/api/students/{st.id}/notes", headers=auth_headers(counselor),
                          json={"content": "Draft"}).get_json()["note"]["id"]
        assert client.put(f"/api/notes/{nid}", headers=auth_headers(admin),
                          json={"content": "Hijack"}).status_code == 403
        res = client.put(f"/api/notes/{nid}", headers=auth_headers(counselor), json={"content": "Final"})
        assert res.get_json()["note"]["content"] == "Final"
        assert client.delete(f"/api/notes/{nid}", headers=auth_headers(counselor)).status_code == 200

    def test_validation(self, client, counselor, auth_headers, make_student):
        st = make_student()
        h = auth_headers(counselor)
        assert client.post(f"/api/students/{st.id}/notes", headers=h, json={"content": " "}).status_code == 400
        assert client.post(f"/api/students/{st.id}/notes", headers=h,
                           json={"content": "x", "type": "gossip"}).status_code == 400
