"""Route tests for the university catalog and the health check."""
from datetime import date

from extensions import db
from models.application import Application


class TestCatalog:

    def test_admin_creates(self, client, admin, auth_headers):
        res = client.post("/api/universities", headers=auth_headers(admin), json={
            "name": "University of Toronto", "country": "Canada", "city": "Toronto",
            "ranking": 21, "acceptance_rate": 43,
        })
        assert res.status_code == 201
        assert res.get_json()["university"]["acceptance_rate"] == 43.0

    def test_counselor_cannot_create(self, client, counselor, auth_headers):
        res = client.post("/api/universities", headers=auth_headers(counselor),
                          json={"name": "X", "country": "Y"})
        assert res.status_code == 403

    def test_duplicate_and_bad_rate(self, client, admin, auth_headers, make_university):
        make_university(name="Taken")
        h = auth_headers(admin)
        assert client.post("/api/universities", headers=h,
                           json={"name": "Taken", "country": "UK"}).status_code == 409
        assert client.post("/api/universities", headers=h,
                           json={"name": "New", "country": "UK", "acceptance_rate": 120}).status_code == 400

    def test_list_hides_inactive(self, client, counselor, auth_headers, make_university):
        make_university(name="Open")
        make_university(name="Closed", active=False)
        h = auth_headers(counselor)
        names = [u["name"] for u in client.get("/api/universities", headers=h).get_json()["items"]]
        assert names == ["Open"]
        body = client.get("/api/universities?include_inactive=1", headers=h).get_json()
        assert body["total"] == 2

    def test_delete_in_use_deactivates(self, client, admin, auth_headers, make_student, make_university):
        st = make_student()
        used = make_university()
        unused = make_university()
        db.session.add(Application(student_id=st.id, university_id=used.id, course_name="CS",
                                   course_level="UNDERGRADUATE", intake_term="Sep 2026",
                                   application_deadline=date(2026, 3, 1)))
        db.session.commit()
        h = auth_headers(admin)
        res = client.delete(f"/api/universities/{used.id}", headers=h)
        assert res.get_json()["university"]["active"] is False
        assert client.delete(f"/api/universities/{unused.id}", headers=h).status_code == 200
        assert client.get(f"/api/universities/{unused.id}", headers=h).status_code == 404


class TestHealth:

    def test_health(self, client):
        body = client.get("/api/health").get_json()
        assert body == {"status": "ok", "database": "ok", "cache": "memory"}
