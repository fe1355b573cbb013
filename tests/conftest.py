"""Shared pytest fixtures.

Fixture overview
----------------
app           : application built from ``TestConfig`` on in-memory sqlite,
                with uploads going to a per-test temp directory
client        : Flask test client
admin / counselor / other_counselor / marketing
              : seeded staff users
auth_headers  : factory: ``auth_headers(user)`` -> Authorization header
make_student  : factory for students owned by ``counselor`` by default
make_document : factory for document rows (no file on disk)
make_university: factory for active universities
pushes        : records realtime pushes as (event, room)
"""
from datetime import datetime

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from config import TestConfig
from extensions import db
from models.document import Document
from models.student import Student
from models.university import University
from models.user import User
from services import realtime


@pytest.fixture
def app(tmp_path):
    app = create_app(TestConfig, UPLOAD_FOLDER=str(tmp_path / "uploads"))
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


def _user(username, role, password="password123"):
    u = User(username=username, email=f"{username}@example.com", name=username.title(), role=role)
    u.set_password(password)
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def admin(app):
    return _user("admin", "admin")


@pytest.fixture
def counselor(app):
    return _user("counselor", "counselor")


@pytest.fixture
def other_counselor(app):
    return _user("counselor2", "counselor")


@pytest.fixture
def marketing(app):
    return _user("marketer", "marketing")


@pytest.fixture
def auth_headers(app):
    def make(user):
        token = create_access_token(identity=str(user.id), additional_claims={"roles": user.roles})
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def make_student(app, counselor):
    seq = {"n": 0}

    def make(owner=None, **fields):
        seq["n"] += 1
        owner = owner or counselor
        st = Student(
            first_name=fields.pop("first_name", "Student"),
            last_name=fields.pop("last_name", str(seq["n"])),
            email=fields.pop("email", f"student{seq['n']}@example.com"),
            counselor_id=owner.id,
            **fields,
        )
        db.session.add(st)
        db.session.commit()
        return st
    return make


@pytest.fixture
def make_document(app, counselor):
    def make(student, doc_type, status="PENDING", **fields):
        doc = Document(
            student_id=student.id,
            type=doc_type,
            name=f"{doc_type.lower()}.pdf",
            path=f"{student.id}/{doc_type.lower()}.pdf",
            status=status,
            uploaded_by=fields.pop("uploaded_by", counselor.id),
            created_at=datetime.utcnow(),
            **fields,
        )
        db.session.add(doc)
        db.session.commit()
        return doc
    return make


@pytest.fixture
def make_university(app):
    seq = {"n": 0}

    def make(name=None, country="United Kingdom", active=True):
        seq["n"] += 1
        u = University(name=name or f"University {seq['n']}", country=country, active=active)
        db.session.add(u)
        db.session.commit()
        return u
    return make


@pytest.fixture
def upload_docs(make_document):
    """Upload every document type in ``types`` for ``student``."""
    def upload(student, types, status="APPROVED"):
        return [make_document(student, t, status=status) for t in types]
    return upload


@pytest.fixture
def pushes(monkeypatch):
    """Records ``(event, room)`` for every realtime push instead of emitting."""
    sent = []
    monkeypatch.setattr(realtime, "_push", lambda event, payload, room: sent.append((event, room)) or True)
    return sent
