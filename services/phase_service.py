# services/phase_service.py
"""
Phase changes, reopen and pipeline snapshots.

Every operation validates fully before it writes, then commits once.
Side effects (notification push, dashboard cache, WebSocket update) run
after the commit and never fail the call.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func

from extensions import db
from models.activity import Activity
from models.country import CountryProcess
from models.country_profile import DEFAULT_MAX_REOPEN, CountryProfile, PhaseEvent, PhaseMetadata
from models.document import COUNTABLE_STATUSES, Document
from models.pipeline_record import PaymentRecord, PhaseDecision, UniversitySelection
from models.university import University
from services import phases as P
from services import realtime
from services.cache import invalidate_counselor
from services.errors import Conflict, CRMError, Forbidden, NotFound, PhaseTransitionError
from services.notifications import deliver, notify

logger = logging.getLogger(__name__)


# ==== lookups ====

def find_process(country):
    """Active CountryProcess for ``country`` (matched by normalized key)."""
    if not country:
        return None
    key = P.normalize_country_key(country)
    proc = CountryProcess.query.filter(
        func.lower(CountryProcess.country) == country.strip().lower(),
        CountryProcess.is_active.is_(True),
    ).first()
    if proc:
        return proc
    for proc in CountryProcess.query.filter_by(is_active=True).all():
        if P.normalize_country_key(proc.country) == key:
            return proc
    return None


def steps_for(country=None):
    return P.phase_steps(country, find_process(country))


def uploaded_document_types(student_id):
    rows = (
        db.session.query(Document.type)
        .filter(
            Document.student_id == student_id,
            Document.status.in_(COUNTABLE_STATUSES),
            Document.is_latest.is_(True),
        )
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def _scoped(query, model, student_id, country):
    query = query.filter(model.student_id == student_id)
    if country:
        return query.filter(model.country == country)
    return query.filter(model.country.is_(None))


def current_selections(student_id, country, kind):
    q = _scoped(UniversitySelection.query, UniversitySelection, student_id, country)
    return q.filter(UniversitySelection.kind == kind).order_by(UniversitySelection.id.asc()).all()


def get_profile(student_id, country):
    return CountryProfile.query.filter_by(student_id=student_id, country=country).first()


def _meta(student_id, country, phase_name):
    return PhaseMetadata.query.filter_by(
        student_id=student_id, country=country, phase_name=phase_name
    ).first()


def _get_or_create_meta(student_id, country, phase_name, status="Pending"):
    meta = _meta(student_id, country, phase_name)
    if meta is None:
        meta = PhaseMetadata(
            student_id=student_id,
            country=country,
            phase_name=phase_name,
            status=status,
            reopen_count=0,
            max_reopen_allowed=DEFAULT_MAX_REOPEN,
            final_edit_allowed=True,
        )
        db.session.add(meta)
        db.session.flush()
    return meta


# ==== validation ====

def _check_documents(student, previous, to_phase, country, steps):
    uploaded = uploaded_document_types(student.id)
    label = P.phase_label(to_phase, steps)

    if previous == "DOCUMENT_COLLECTION" and to_phase != previous:
        missing = P.missing_documents(
            P.required_documents("DOCUMENT_COLLECTION", country, steps), uploaded
        )
        if missing:
            raise PhaseTransitionError(
                f"Cannot proceed to {label} phase. Document Collection phase is not complete; "
                "all required documents must be uploaded first.",
                missing_documents=missing,
                document_details=P.document_details(missing),
                phase_name=label,
                phase_description="Document Collection phase must be completed before proceeding",
                country=country,
            )

    missing = P.missing_documents(P.required_documents(to_phase, country, steps), uploaded)
    if missing:
        where = f" ({country})" if country else ""
        raise PhaseTransitionError(
            f"Cannot proceed to {label} phase{where}. Missing required documents.",
            missing_documents=missing,
            document_details=P.document_details(missing),
            phase_name=label,
            phase_description=P.phase_description(to_phase, country, steps),
            country=country,
        )


def _as_ids(value, field):
    items = value if isinstance(value, (list, tuple)) else [value]
    out = []
    for v in items:
        try:
            out.append(int(v))
        except (TypeError, ValueError):
            raise CRMError(f"{field} must contain university ids", payload={"invalid_ids": [v]})
    return out


_EMPTY_SOURCE_MESSAGES = {
    "SHORTLIST": "No shortlisted universities found. Please shortlist universities first "
                 "in the University Shortlisting phase.",
    "SUBMISSION": "No universities found from Application Submission phase. "
                  "Please submit applications first.",
}


def _source_rows(student, country, sources):
    """University ids of the first non-empty source kind, and that kind."""
    for source in sources:
        rows = current_selections(student.id, country, source)
        if rows:
            return [r.university_id for r in rows], source
    return [], None


def _empty_source(sources):
    return CRMError(_EMPTY_SOURCE_MESSAGES.get(
        sources[0], "No universities found. Please shortlist universities first "
                    "in the University Shortlisting phase."))


def _validate_selection(student, country, to_phase, rule, data, entering=False):
    kind = rule.get("selection")
    if not kind:
        return None
    field = rule["selection_field"]
    sources = rule.get("selection_source")
    raw = data.get(field)
    if raw in (None, "", []):
        if rule.get("selection_required"):
            raise CRMError(f"Please select a university for {P.phase_label(to_phase)}.")
        # a phase fed by earlier selections cannot be entered without them
        if entering and sources and not _source_rows(student, country, sources)[0]:
            raise _empty_source(sources)
        return None

    multiple = field == "selected_universities"
    if multiple and not isinstance(raw, (list, tuple)):
        raise CRMError(f"{field} must be a list")
    ids = _as_ids(raw, field)
    if not multiple:
        ids = ids[:1]
    ids = list(dict.fromkeys(ids))

    if sources is None:
        valid = University.query.filter(University.id.in_(ids), University.active.is_(True)).all()
        if len(valid) != len(ids):
            raise CRMError(
                "Some selected universities are invalid or inactive",
                payload={"invalid_count": len(ids) - len(valid)},
            )
        return {"kind": kind, "ids": ids, "is_fallback": False}

    available, used = _source_rows(student, country, sources)
    if not available:
        raise _empty_source(sources)

    invalid = [i for i in ids if i not in available]
    if invalid:
        raise CRMError(
            "Some selected universities are not in the available universities list",
            payload={"invalid_ids": invalid, "source": used},
        )
    return {"kind": kind, "ids": ids, "is_fallback": used != sources[0]}


def _validate_decision(rule, data):
    kind = rule.get("decision")
    if not kind:
        return None
    field = rule["decision_field"]
    value = data.get(field)
    if value in (None, ""):
        return None
    value = str(value).strip().upper()
    if value not in rule["decision_values"]:
        raise CRMError(
            f"Invalid {field}. Must be one of: {', '.join(rule['decision_values'])}",
            payload={"field": field},
        )
    return {"kind": kind, "value": value}


def latest_decision(student_id, country, phase, kind):
    q = _scoped(PhaseDecision.query, PhaseDecision, student_id, country)
    return (
        q.filter(PhaseDecision.phase == phase, PhaseDecision.kind == kind)
        .order_by(PhaseDecision.decided_at.desc(), PhaseDecision.id.desc())
        .first()
    )


def _check_skip(steps, previous, to_phase, country):
    """Forward moves go one step at a time."""
    expected = P.next_phase(steps, previous)
    if expected is None or expected == to_phase:
        return
    raise PhaseTransitionError(
        f"Cannot skip from {P.phase_label(previous, steps)} to {P.phase_label(to_phase, steps)}. "
        f"Complete {P.phase_label(expected, steps)} first.",
        phase_name=to_phase,
        country=country,
        next_phase=expected,
    )


def _check_exit_decision(student, previous, country, steps):
    """The phase being left must carry a decision that lets the student proceed."""
    rule = P.transition_for(previous)
    if not rule.get("decision_required"):
        return
    label = P.phase_label(previous, steps)
    found = latest_decision(student.id, country, previous, rule["decision"])
    if found is None:
        raise PhaseTransitionError(
            f"Cannot leave {label} phase. Record the {rule['decision_field']} decision first.",
            phase_name=previous,
            country=country,
            decision_field=rule["decision_field"],
        )
    if found.value not in rule["proceed_values"]:
        raise PhaseTransitionError(
            f"Cannot leave {label} phase. The recorded decision is {found.value}.",
            phase_name=previous,
            country=country,
            decision_field=rule["decision_field"],
            decision=found.value,
        )


def _validate_payment(rule, data):
    if not rule.get("payment"):
        return None
    amount, ptype = data.get("payment_amount"), data.get("payment_type")
    if amount in (None, "") and not ptype:
        return None
    if amount not in (None, ""):
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise CRMError("payment_amount must be a number")
        if amount < 0:
            raise CRMError("payment_amount must not be negative")
    else:
        amount = None
    if ptype:
        ptype = str(ptype).strip().upper()
        if ptype not in P.PAYMENT_TYPES:
            raise CRMError(f"Invalid payment_type. Must be one of: {', '.join(P.PAYMENT_TYPES)}")
    return {"amount": amount, "payment_type": ptype or None}


# ==== writes ====

def _write_selection(student, country, capture, actor_id):
    _scoped(UniversitySelection.query, UniversitySelection, student.id, country) \
        .filter(UniversitySelection.kind == capture["kind"]) \
        .delete(synchronize_session=False)
    for uid in capture["ids"]:
        db.session.add(UniversitySelection(
            student_id=student.id,
            country=country,
            kind=capture["kind"],
            university_id=uid,
            is_fallback=capture["is_fallback"],
            selected_by=actor_id,
        ))


def _advance_metadata(student_id, country, steps, previous, to_phase):
    if P.phase_direction(steps, previous, to_phase) != 1:
        return
    prev = _get_or_create_meta(student_id, country, previous, status="Completed")
    if prev.reopen_count > prev.max_reopen_allowed:
        prev.status = "Locked"
        prev.final_edit_allowed = False
    else:
        prev.status = "Completed"
    _get_or_create_meta(student_id, country, to_phase, status="Current").status = "Current"
    _reset_later(student_id, country, steps, to_phase)


def _reset_later(student_id, country, steps, phase):
    later = P.later_phases(steps, phase)
    if not later:
        return
    PhaseMetadata.query.filter(
        PhaseMetadata.student_id == student_id,
        PhaseMetadata.country == country,
        PhaseMetadata.phase_name.in_(later),
    ).update({"status": "Pending"}, synchronize_session=False)


def _actor_id(actor):
    return getattr(actor, "id", actor)


def _actor_name(actor):
    return getattr(actor, "name", None) or getattr(actor, "username", None) or "A counselor"


# ==== operations ====

def change_phase(student, to_phase, actor, country=None, remarks=None, data=None):
    """
    Move ``student`` (or one of its country profiles) to ``to_phase``.

    ``data`` may carry ``selected_universities`` / ``selected_university``,
    a decision field (``interview_status``, ``cas_visa_status``,
    ``visa_status``, ``visa_decision``, ``financial_option``) and, for
    payment phases, ``payment_amount`` / ``payment_type``.
    """
    data = data or {}
    to_phase = (to_phase or "").strip().upper()
    country = (country or "").strip() or None
    if not to_phase:
        raise CRMError("current_phase is required")

    steps = steps_for(country)
    if not country and to_phase not in P.PHASES:
        raise CRMError("Invalid phase", payload={"valid_phases": P.PHASES})
    if country and to_phase not in P.step_keys(steps):
        raise CRMError(f"Invalid phase for {country}", payload={"valid_phases": P.step_keys(steps)})

    if student.is_paused:
        raise Conflict("Student is paused. Resume the student before changing phases.",
                       payload={"pause_reason": student.pause_reason})

    profile = None
    if country:
        profile = get_profile(student.id, country)
        if profile is None:
            raise NotFound(f"Country profile for {country} not found. Please create a country profile first.")
        previous = profile.current_phase
    else:
        previous = student.current_phase

    changed = to_phase != previous
    if changed:
        direction = P.phase_direction(steps, previous, to_phase)
        if direction == -1:
            raise PhaseTransitionError(
                f"Cannot move back to {P.phase_label(to_phase, steps)}. Reopen the phase instead.",
                phase_name=to_phase,
                country=country,
            )
        if direction == 1:
            _check_skip(steps, previous, to_phase, country)
            _check_exit_decision(student, previous, country, steps)
        _check_documents(student, previous, to_phase, country, steps)

    if country:
        target = _meta(student.id, country, to_phase)
        if target is not None and target.is_locked:
            raise PhaseTransitionError(
                f"Cannot move to {P.phase_label(to_phase, steps)} phase. This phase is permanently locked.",
                phase_name=to_phase,
                country=country,
                status="Locked",
            )

    rule = P.transition_for(to_phase)
    selection = _validate_selection(student, country, to_phase, rule, data, entering=changed)
    decision = _validate_decision(rule, data)
    payment = _validate_payment(rule, data)

    # ---- all checks passed; write ----
    actor_id = _actor_id(actor)
    now = datetime.utcnow()

    if profile is not None:
        if changed:
            _advance_metadata(student.id, country, steps, previous, to_phase)
        profile.current_phase = to_phase
        profile.last_updated = now
    else:
        student.current_phase = to_phase

    if to_phase == "ENROLLMENT" and student.status != "COMPLETED":
        student.status = "COMPLETED"

    if selection:
        _write_selection(student, country, selection, actor_id)
    if decision:
        db.session.add(PhaseDecision(
            student_id=student.id, country=country, phase=to_phase,
            kind=decision["kind"], value=decision["value"],
            remarks=remarks, decided_by=actor_id,
        ))
    if payment:
        db.session.add(PaymentRecord(
            student_id=student.id, country=country, phase=to_phase,
            amount=payment["amount"], payment_type=payment["payment_type"],
            recorded_by=actor_id,
        ))

    kind = "CHANGE" if changed else "UPDATE"
    db.session.add(PhaseEvent(
        student_id=student.id, country=country, kind=kind,
        from_phase=previous, to_phase=to_phase, remarks=remarks, actor_id=actor_id,
    ))

    where = f" for {country}" if country else ""
    if changed:
        desc = f"Phase changed from {previous} to {to_phase}{where}"
    else:
        desc = f"Phase {to_phase} updated{where}"
    Activity.log(
        "PHASE_CHANGE" if changed else "PHASE_UPDATE", desc, student.id, actor_id,
        from_phase=previous, to_phase=to_phase, country=country, remarks=remarks,
    )

    note = None
    if changed and student.marketing_owner_id and student.marketing_owner_id != actor_id:
        note = notify(
            student.marketing_owner_id,
            "phase_change",
            "Student phase updated",
            f"{_actor_name(actor)} moved {student.full_name} to "
            f"{P.phase_label(to_phase, steps)}{where}",
            student_id=student.id,
            from_phase=previous,
            to_phase=to_phase,
            country=country,
        )

    db.session.commit()
    logger.info("student %s phase %s -> %s (country=%s) by %s",
                student.id, previous, to_phase, country, actor_id)

    # ---- after commit ----
    deliver(note)
    invalidate_counselor(student.counselor_id)
    realtime.send_student_phase_update(student.id, student.counselor_id, {
        "type": "phase_change" if changed else "phase_update",
        "country": country,
        "previous_phase": previous,
        "current_phase": to_phase,
        "student_name": student.full_name,
    })

    return {
        "student": student.to_dict(),
        "country_profile": profile.to_dict() if profile else None,
        "previous_phase": previous,
        "current_phase": to_phase,
        "changed": changed,
        "captured": {
            "selection": selection,
            "decision": decision,
            "payment": {
                "amount": float(payment["amount"]) if payment and payment["amount"] is not None else None,
                "payment_type": payment["payment_type"],
            } if payment else None,
        },
    }


def reopen_phase(student, phase_name, country, actor):
    """Move a country profile back to an earlier phase, spending one reopen."""
    phase_name = (phase_name or "").strip().upper()
    country = (country or "").strip() or None
    if not phase_name:
        raise CRMError("Phase name is required")
    if not country:
        return _reopen_global(student, phase_name, actor)

    profile = get_profile(student.id, country)
    if profile is None:
        raise NotFound(f"Country profile for {country} not found.")

    steps = steps_for(country)
    keys = P.step_keys(steps)
    if phase_name not in keys:
        raise CRMError(f"Unknown phase {phase_name} for {country}", payload={"valid_phases": keys})

    existing = _meta(student.id, country, phase_name)
    if existing is not None and existing.status == "Pending":
        raise CRMError(
            f"Phase {phase_name} has not been started yet. Cannot reopen a phase that hasn't been completed."
        )
    meta = existing or _get_or_create_meta(student.id, country, phase_name, status="Completed")

    if meta.status == "Locked":
        raise PhaseTransitionError(
            "This phase is permanently locked. Maximum updates reached.",
            phase_name=phase_name, country=country, status="Locked",
        )
    if meta.reopen_count >= meta.max_reopen_allowed:
        meta.status = "Locked"
        meta.final_edit_allowed = False
        db.session.commit()
        logger.info("phase %s locked for student %s (%s)", phase_name, student.id, country)
        raise PhaseTransitionError(
            "Maximum reopen attempts reached. This phase is now permanently locked.",
            phase_name=phase_name, country=country, status="Locked",
            reopen_count=meta.reopen_count, max_reopen_allowed=meta.max_reopen_allowed,
        )

    if P.phase_direction(steps, profile.current_phase, phase_name) != -1:
        raise CRMError("Can only reopen previous phases. Use phase update to move forward.")

    previous = profile.current_phase
    actor_id = _actor_id(actor)

    profile.current_phase = phase_name
    profile.last_updated = datetime.utcnow()
    meta.reopen_count = (meta.reopen_count or 0) + 1
    meta.status = "Current"
    meta.final_edit_allowed = meta.reopen_count <= meta.max_reopen_allowed
    _reset_later(student.id, country, steps, phase_name)

    db.session.add(PhaseEvent(
        student_id=student.id, country=country, kind="REOPEN",
        from_phase=previous, to_phase=phase_name, actor_id=actor_id,
    ))
    Activity.log(
        "PHASE_REOPEN",
        f"Phase {phase_name} reopened for {country} (was {previous})",
        student.id, actor_id,
        country=country, reopen_count=meta.reopen_count,
    )
    db.session.commit()
    logger.info("student %s reopened %s (%s), count=%s",
                student.id, phase_name, country, meta.reopen_count)

    invalidate_counselor(student.counselor_id)
    realtime.send_student_phase_update(student.id, student.counselor_id, {
        "type": "phase_reopen",
        "country": country,
        "previous_phase": previous,
        "current_phase": phase_name,
    })

    return {
        "country_profile": profile.to_dict(),
        "previous_phase": previous,
        "phase": meta.to_dict(),
        "edits_left": meta.edits_left,
        "is_final_edit": not meta.final_edit_allowed,
    }


def _reopen_global(student, phase_name, actor):
    # the global pipeline keeps no per-phase metadata, so there is no reopen budget
    if "admin" not in (getattr(actor, "roles", None) or []):
        raise Forbidden("Country is required for phase reopening. "
                        "Only admins can reopen the global pipeline.")
    steps = steps_for(None)
    if phase_name not in P.PHASES:
        raise CRMError("Invalid phase", payload={"valid_phases": P.PHASES})
    if P.phase_direction(steps, student.current_phase, phase_name) != -1:
        raise CRMError("Can only reopen previous phases. Use phase update to move forward.")

    previous = student.current_phase
    actor_id = _actor_id(actor)
    student.current_phase = phase_name
    db.session.add(PhaseEvent(
        student_id=student.id, country=None, kind="REOPEN",
        from_phase=previous, to_phase=phase_name, actor_id=actor_id,
    ))
    Activity.log(
        "PHASE_REOPEN",
        f"Phase {phase_name} reopened (was {previous})",
        student.id, actor_id,
    )
    db.session.commit()
    logger.info("student %s global phase reopened %s -> %s by %s",
                student.id, previous, phase_name, actor_id)

    invalidate_counselor(student.counselor_id)
    realtime.send_student_phase_update(student.id, student.counselor_id, {
        "type": "phase_reopen",
        "country": None,
        "previous_phase": previous,
        "current_phase": phase_name,
    })
    return {
        "student": student.to_dict(),
        "country_profile": None,
        "previous_phase": previous,
        "current_phase": phase_name,
    }


def phase_metadata(student, country):
    """Status of every step for a country profile, with defaults for untracked ones."""
    profile = get_profile(student.id, country)
    if profile is None:
        raise NotFound(f"Country profile for {country} not found.")
    steps = steps_for(country)
    tracked = {
        m.phase_name: m
        for m in PhaseMetadata.query.filter_by(student_id=student.id, country=country).all()
    }
    out = []
    for s in steps:
        m = tracked.get(s["key"])
        if m is not None:
            row = m.to_dict()
        else:
            row = {
                "phase_name": s["key"],
                "status": "Current" if s["key"] == profile.current_phase else "Pending",
                "reopen_count": 0,
                "max_reopen_allowed": DEFAULT_MAX_REOPEN,
                "final_edit_allowed": True,
                "edits_left": DEFAULT_MAX_REOPEN + 1,
            }
        row["label"] = s["label"]
        out.append(row)
    return {"country": country, "current_phase": profile.current_phase, "phases": out}


def pipeline_snapshot(student, country=None):
    """Selections, decisions, payments and events for one scope, grouped by kind."""
    country = (country or "").strip() or None
    selections = {}
    q = _scoped(UniversitySelection.query, UniversitySelection, student.id, country)
    for s in q.order_by(UniversitySelection.id.asc()).all():
        selections.setdefault(s.kind, []).append(s.to_dict())

    decisions = {}
    q = _scoped(PhaseDecision.query, PhaseDecision, student.id, country)
    for d in q.order_by(PhaseDecision.decided_at.asc(), PhaseDecision.id.asc()).all():
        decisions[d.kind] = d.to_dict()  # latest wins

    payments = [
        p.to_dict() for p in
        _scoped(PaymentRecord.query, PaymentRecord, student.id, country)
        .order_by(PaymentRecord.recorded_at.asc()).all()
    ]
    events = [
        e.to_dict() for e in
        _scoped(PhaseEvent.query, PhaseEvent, student.id, country)
        .order_by(PhaseEvent.created_at.desc(), PhaseEvent.id.desc()).all()
    ]

    steps = steps_for(country)
    if country:
        profile = get_profile(student.id, country)
        current = profile.current_phase if profile else None
    else:
        current = student.current_phase

    return {
        "country": country,
        "current_phase": current,
        "steps": steps,
        "selections": selections,
        "decisions": decisions,
        "payments": payments,
        "events": events,
    }
