# services/exports.py
# Spreadsheet exports of a counselor's students (pandas + openpyxl).
from __future__ import annotations

import json
from io import BytesIO

import pandas as pd

STUDENT_COLUMNS = [
    "id", "first_name", "last_name", "email", "phone",
    "nationality", "current_phase", "status", "is_paused",
    "target_countries", "preferred_university", "preferred_course",
    "counselor", "country_phases", "applications", "documents",
    "created_at", "updated_at",
]

APPLICATION_COLUMNS = [
    "student_id", "student_name", "university", "country", "course_name",
    "course_level", "intake_term", "application_deadline", "status",
    "priority", "offer_letter_received", "scholarship_offered",
]


def _to_cell(v):
    if v is None:
        return ""
    if isinstance(v, bool):
        return "yes" if v else "no"
    if hasattr(v, "isoformat"):
        return v.isoformat()
    if isinstance(v, (list, dict)):
        return json.dumps(v, ensure_ascii=False)
    return v


def student_row(s) -> dict:
    counselor = s.counselor
    return {
        "id": s.id,
        "first_name": s.first_name,
        "last_name": s.last_name,
        "email": s.email,
        "phone": s.phone,
        "nationality": s.nationality,
        "current_phase": s.current_phase,
        "status": s.status,
        "is_paused": s.is_paused,
        "target_countries": ", ".join(s.target_country_list),
        "preferred_university": s.preferred_university,
        "preferred_course": s.preferred_course,
        "counselor": (counselor.name or counselor.username) if counselor else "",
        "country_phases": "; ".join(f"{p.country}: {p.current_phase}" for p in s.country_profiles),
        "applications": len(s.applications),
        "documents": sum(1 for d in s.documents if d.is_latest),
        "created_at": s.created_at,
        "updated_at": s.updated_at,
    }


def application_rows(students) -> list[dict]:
    rows = []
    for s in students:
        for a in s.applications:
            uni = a.university
            rows.append({
                "student_id": s.id,
                "student_name": s.full_name,
                "university": uni.name if uni else "",
                "country": uni.country if uni else "",
                "course_name": a.course_name,
                "course_level": a.course_level,
                "intake_term": a.intake_term,
                "application_deadline": a.application_deadline,
                "status": a.status,
                "priority": a.priority,
                "offer_letter_received": a.offer_letter_received,
                "scholarship_offered": a.scholarship_offered,
            })
    return rows


def _frame(rows, columns) -> pd.DataFrame:
    return pd.DataFrame([{k: _to_cell(r.get(k)) for k in columns} for r in rows], columns=columns)


def students_frame(students) -> pd.DataFrame:
    return _frame([student_row(s) for s in students], STUDENT_COLUMNS)


def students_csv(students) -> str:
    # BOM so Excel opens UTF-8 correctly
    return "\ufeff" + students_frame(students).to_csv(index=False)


def students_xlsx(students) -> BytesIO:
    """Workbook with a ``students`` and an ``applications`` sheet."""
    bio = BytesIO()
    with pd.ExcelWriter(bio, engine="openpyxl") as writer:
        students_frame(students).to_excel(writer, sheet_name="students", index=False)
        _frame(application_rows(students), APPLICATION_COLUMNS).to_excel(
            writer, sheet_name="applications", index=False
        )
    bio.seek(0)
    return bio
