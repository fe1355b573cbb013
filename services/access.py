# services/access.py
# Which students the caller may see: admins all, counselors their own,
# marketing the students they own.
from flask_jwt_extended import get_jwt, get_jwt_identity

from models.student import Student
from services.errors import NotFound


def _uid():
    try:
        return int(get_jwt_identity())
    except (TypeError, ValueError):
        return None


def _roles():
    roles = (get_jwt() or {}).get("roles") or []
    return [roles] if isinstance(roles, str) else list(roles)


def scope_students(query=None):
    query = query if query is not None else Student.query
    roles = _roles()
    if "admin" in roles:
        return query
    uid = _uid()
    if "marketing" in roles:
        return query.filter(Student.marketing_owner_id == uid)
    return query.filter(Student.counselor_id == uid)


def get_student(student_id):
    """Student visible to the caller, else NotFound (never leaks existence)."""
    st = scope_students().filter(Student.id == student_id).first()
    if st is None:
        raise NotFound("Student not found")
    return st
