"""
Tests for phase changes, reopen and pipeline snapshots.

Tests:
- Document gating (collection rule, target phase, countable statuses)
- Backward moves, skipped steps, paused students, unknown phases
- Decisions that gate leaving a phase
- Selections, decisions and payments captured on a transition
- Country profile metadata and the reopen/lock lifecycle
- Realtime pushes after a change or reopen
"""
import pytest

from extensions import db
from models.activity import Activity
from models.country_profile import CountryProfile, PhaseEvent, PhaseMetadata
from models.notification import Notification
from models.pipeline_record import PaymentRecord, PhaseDecision, UniversitySelection
from services import phase_service, realtime
from services.errors import Conflict, CRMError, Forbidden, NotFound, PhaseTransitionError
from services.phases import PHASE_REQUIREMENTS

COLLECTION = PHASE_REQUIREMENTS["DOCUMENT_COLLECTION"]
COUNTRY = "Narnia"  # no configured process, no country-specific documents


@pytest.fixture
def student(make_student):
    return make_student()


@pytest.fixture
def ready(student, upload_docs):
    """Student with every document needed up to INTERVIEW."""
    upload_docs(student, COLLECTION + ["ENGLISH_TEST_SCORE", "FINANCIAL_STATEMENT"])
    return student


@pytest.fixture
def unis(make_university):
    return [make_university() for _ in range(3)]


def _profile(student, country=COUNTRY, phase="DOCUMENT_COLLECTION"):
    p = CountryProfile(student_id=student.id, country=country, current_phase=phase)
    db.session.add(p)
    db.session.add(PhaseMetadata(student_id=student.id, country=country, phase_name=phase, status="Current"))
    db.session.commit()
    return p


def _meta(student, phase, country=COUNTRY):
    return PhaseMetadata.query.filter_by(student_id=student.id, country=country, phase_name=phase).first()


def _place(student, phase):
    """Put ``student`` on ``phase`` of the global pipeline."""
    student.current_phase = phase
    db.session.commit()
    return student


def _shortlist(student, unis, country=None, kind="SHORTLIST"):
    for u in unis:
        db.session.add(UniversitySelection(student_id=student.id, country=country, kind=kind,
                                           university_id=u.id))
    db.session.commit()


def _decide(student, phase, kind, value, country=None):
    db.session.add(PhaseDecision(student_id=student.id, country=country, phase=phase, kind=kind, value=value))
    db.session.commit()


class TestDocumentGating:

    def test_leaving_collection_needs_all_collection_docs(self, student, counselor):
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(student, "UNIVERSITY_SHORTLISTING", counselor)
        err = exc.value
        assert err.status == 400
        assert err.missing_documents == COLLECTION
        assert err.payload["phase_name"] == "University Shortlisting"
        assert [d["type"] for d in err.payload["document_details"]] == COLLECTION

    def test_target_phase_documents(self, student, counselor, upload_docs):
        upload_docs(student, COLLECTION)
        _place(student, "UNIVERSITY_SHORTLISTING")
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(student, "APPLICATION_SUBMISSION", counselor)
        assert exc.value.missing_documents == ["ENGLISH_TEST_SCORE"]
        assert db.session.get(type(student), student.id).current_phase == "UNIVERSITY_SHORTLISTING"

    def test_rejected_documents_do_not_count(self, student, counselor, upload_docs, make_document):
        upload_docs(student, [t for t in COLLECTION if t != "PASSPORT"])
        make_document(student, "PASSPORT", status="REJECTED")
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(student, "UNIVERSITY_SHORTLISTING", counselor)
        assert exc.value.missing_documents == ["PASSPORT"]

    def test_superseded_versions_do_not_count(self, student, counselor, upload_docs, make_document):
        upload_docs(student, [t for t in COLLECTION if t != "CV_RESUME"])
        make_document(student, "CV_RESUME", status="APPROVED", is_latest=False)
        with pytest.raises(PhaseTransitionError):
            phase_service.change_phase(student, "UNIVERSITY_SHORTLISTING", counselor)

    def test_forward_move_writes_history(self, ready, counselor):
        result = phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor, remarks="docs in")
        assert result["changed"] is True
        assert result["previous_phase"] == "DOCUMENT_COLLECTION"
        assert result["student"]["current_phase"] == "UNIVERSITY_SHORTLISTING"

        event = PhaseEvent.query.filter_by(student_id=ready.id).one()
        assert (event.kind, event.from_phase, event.to_phase) == ("CHANGE", "DOCUMENT_COLLECTION",
                                                                  "UNIVERSITY_SHORTLISTING")
        assert event.remarks == "docs in"
        assert Activity.query.filter_by(student_id=ready.id, type="PHASE_CHANGE").count() == 1


class TestRejectedChanges:

    def test_unknown_phase(self, student, counselor):
        with pytest.raises(CRMError) as exc:
            phase_service.change_phase(student, "MOON_LANDING", counselor)
        assert "valid_phases" in exc.value.payload

    def test_visa_decision_is_country_only(self, student, counselor):
        with pytest.raises(CRMError):
            phase_service.change_phase(student, "VISA_DECISION", counselor)

    def test_paused_student(self, ready, counselor):
        ready.is_paused = True
        ready.pause_reason = "waiting on family"
        db.session.commit()
        with pytest.raises(Conflict) as exc:
            phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor)
        assert exc.value.payload["pause_reason"] == "waiting on family"

    def test_backward_move(self, ready, counselor):
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor)
        with pytest.raises(PhaseTransitionError):
            phase_service.change_phase(ready, "DOCUMENT_COLLECTION", counselor)

    def test_skipping_a_step(self, ready, counselor):
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(ready, "APPLICATION_SUBMISSION", counselor)
        assert exc.value.payload["next_phase"] == "UNIVERSITY_SHORTLISTING"
        assert "Cannot skip" in exc.value.message
        db.session.expire_all()
        assert db.session.get(type(ready), ready.id).current_phase == "DOCUMENT_COLLECTION"
        assert PhaseEvent.query.count() == 0

    def test_skipping_a_country_step(self, ready, counselor, unis):
        _profile(ready, phase="UNIVERSITY_SHORTLISTING")
        _shortlist(ready, unis, country=COUNTRY)
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(ready, "OFFER_RECEIVED", counselor, country=COUNTRY)
        assert exc.value.payload["next_phase"] == "APPLICATION_SUBMISSION"
        assert exc.value.payload["country"] == COUNTRY

    def test_missing_country_profile(self, ready, counselor):
        with pytest.raises(NotFound):
            phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor, country=COUNTRY)


class TestExitDecisions:

    def test_interview_needs_a_decision(self, ready, counselor, upload_docs):
        upload_docs(ready, ["MEDICAL_CERTIFICATE"])
        _place(ready, "INTERVIEW")
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(ready, "FINANCIAL_TB_TEST", counselor)
        assert exc.value.payload["decision_field"] == "interview_status"
        assert exc.value.payload["phase_name"] == "INTERVIEW"

    def test_refused_interview_blocks(self, ready, counselor, upload_docs):
        upload_docs(ready, ["MEDICAL_CERTIFICATE"])
        _place(ready, "INTERVIEW")
        phase_service.change_phase(ready, "INTERVIEW", counselor, data={"interview_status": "REFUSED"})
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(ready, "FINANCIAL_TB_TEST", counselor)
        assert exc.value.payload["decision"] == "REFUSED"

    def test_latest_decision_wins(self, ready, counselor, upload_docs):
        upload_docs(ready, ["MEDICAL_CERTIFICATE"])
        _place(ready, "INTERVIEW")
        phase_service.change_phase(ready, "INTERVIEW", counselor, data={"interview_status": "REFUSED"})
        phase_service.change_phase(ready, "INTERVIEW", counselor, data={"interview_status": "APPROVED"})
        result = phase_service.change_phase(ready, "FINANCIAL_TB_TEST", counselor)
        assert result["current_phase"] == "FINANCIAL_TB_TEST"

    def test_any_financial_option_proceeds(self, ready, counselor, upload_docs):
        upload_docs(ready, ["MEDICAL_CERTIFICATE"])
        _place(ready, "FINANCIAL_TB_TEST")
        with pytest.raises(PhaseTransitionError):
            phase_service.change_phase(ready, "CAS_VISA", counselor)
        phase_service.change_phase(ready, "FINANCIAL_TB_TEST", counselor, data={"financial_option": "loan"})
        assert phase_service.change_phase(ready, "CAS_VISA", counselor)["changed"] is True

    def test_rejected_visa_blocks_enrollment(self, ready, counselor, unis, upload_docs):
        upload_docs(ready, ["ID_CARD", "ENROLLMENT_LETTER"])
        _profile(ready, phase="VISA_DECISION")
        _shortlist(ready, unis[:1], country=COUNTRY)
        _decide(ready, "VISA_DECISION", "VISA_DECISION", "REJECTED", country=COUNTRY)
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(ready, "ENROLLMENT", counselor, country=COUNTRY,
                                       data={"selected_university": unis[0].id})
        assert exc.value.payload["decision"] == "REJECTED"
        assert db.session.get(type(ready), ready.id).status != "COMPLETED"

        phase_service.change_phase(ready, "VISA_DECISION", counselor, country=COUNTRY,
                                   data={"visa_decision": "APPROVED"})
        result = phase_service.change_phase(ready, "ENROLLMENT", counselor, country=COUNTRY,
                                            data={"selected_university": unis[0].id})
        assert result["country_profile"]["current_phase"] == "ENROLLMENT"

    def test_decision_is_scoped_to_country(self, ready, counselor, upload_docs):
        upload_docs(ready, ["MEDICAL_CERTIFICATE"])
        _place(ready, "INTERVIEW")
        _decide(ready, "INTERVIEW", "INTERVIEW", "APPROVED", country=COUNTRY)
        with pytest.raises(PhaseTransitionError):
            phase_service.change_phase(ready, "FINANCIAL_TB_TEST", counselor)


class TestCaptures:

    def test_shortlist_then_submission_subset(self, ready, counselor, unis):
        ids = [u.id for u in unis]
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor,
                                   data={"selected_universities": ids})
        assert {s.university_id for s in UniversitySelection.query.filter_by(kind="SHORTLIST")} == set(ids)

        with pytest.raises(CRMError) as exc:
            phase_service.change_phase(ready, "APPLICATION_SUBMISSION", counselor,
                                       data={"selected_universities": [ids[0], 9999]})
        assert exc.value.payload["invalid_ids"] == [9999]

        phase_service.change_phase(ready, "APPLICATION_SUBMISSION", counselor,
                                   data={"selected_universities": ids[:2]})
        rows = UniversitySelection.query.filter_by(student_id=ready.id, kind="SUBMISSION").all()
        assert sorted(r.university_id for r in rows) == sorted(ids[:2])

    def test_inactive_university_rejected_for_shortlist(self, ready, counselor, make_university):
        closed = make_university(active=False)
        with pytest.raises(CRMError):
            phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor,
                                       data={"selected_universities": [closed.id]})

    def test_submission_without_shortlist(self, ready, counselor, unis):
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor)
        with pytest.raises(CRMError) as exc:
            phase_service.change_phase(ready, "APPLICATION_SUBMISSION", counselor,
                                       data={"selected_universities": [unis[0].id]})
        assert "shortlist" in exc.value.message.lower()

    def test_entering_submission_needs_a_shortlist(self, ready, counselor):
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor)
        with pytest.raises(CRMError) as exc:
            phase_service.change_phase(ready, "APPLICATION_SUBMISSION", counselor)
        assert "shortlist" in exc.value.message.lower()
        db.session.expire_all()
        assert db.session.get(type(ready), ready.id).current_phase == "UNIVERSITY_SHORTLISTING"

    def test_entering_offer_falls_back_to_shortlist(self, ready, counselor, unis):
        _place(ready, "APPLICATION_SUBMISSION")
        _shortlist(ready, unis[:1])
        assert phase_service.change_phase(ready, "OFFER_RECEIVED", counselor)["changed"] is True

    def test_reselecting_replaces_previous_rows(self, ready, counselor, unis):
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor,
                                   data={"selected_universities": [unis[0].id, unis[1].id]})
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor,
                                   data={"selected_universities": [unis[2].id]})
        rows = UniversitySelection.query.filter_by(student_id=ready.id, kind="SHORTLIST").all()
        assert [r.university_id for r in rows] == [unis[2].id]

    def test_enrollment_requires_university_and_completes_student(self, ready, counselor, unis, upload_docs):
        upload_docs(ready, ["ID_CARD", "ENROLLMENT_LETTER"])
        _place(ready, "VISA_APPLICATION")
        _shortlist(ready, unis[:1])
        _decide(ready, "VISA_APPLICATION", "VISA", "APPROVED")
        with pytest.raises(CRMError) as exc:
            phase_service.change_phase(ready, "ENROLLMENT", counselor)
        assert "select a university" in exc.value.message

        result = phase_service.change_phase(ready, "ENROLLMENT", counselor,
                                            data={"selected_university": unis[0].id})
        assert result["student"]["status"] == "COMPLETED"
        sel = UniversitySelection.query.filter_by(student_id=ready.id, kind="ENROLLMENT").one()
        assert sel.university_id == unis[0].id
        assert sel.is_fallback is True  # no OFFER rows, taken from the shortlist

    def test_interview_decision(self, ready, counselor):
        _place(ready, "INITIAL_PAYMENT")
        phase_service.change_phase(ready, "INTERVIEW", counselor, data={"interview_status": "approved"})
        d = PhaseDecision.query.filter_by(student_id=ready.id).one()
        assert (d.kind, d.value, d.phase) == ("INTERVIEW", "APPROVED", "INTERVIEW")

    def test_invalid_decision_writes_nothing(self, ready, counselor):
        _place(ready, "INITIAL_PAYMENT")
        with pytest.raises(CRMError):
            phase_service.change_phase(ready, "INTERVIEW", counselor, data={"interview_status": "MAYBE"})
        db.session.expire_all()
        assert db.session.get(type(ready), ready.id).current_phase == "INITIAL_PAYMENT"
        assert PhaseEvent.query.count() == 0

    def test_same_phase_update_records_decision(self, ready, counselor):
        _place(ready, "INITIAL_PAYMENT")
        phase_service.change_phase(ready, "INTERVIEW", counselor)
        result = phase_service.change_phase(ready, "INTERVIEW", counselor, data={"interview_status": "REFUSED"})
        assert result["changed"] is False
        assert result["captured"]["decision"] == {"kind": "INTERVIEW", "value": "REFUSED"}
        kinds = [e.kind for e in PhaseEvent.query.order_by(PhaseEvent.id).all()]
        assert kinds == ["CHANGE", "UPDATE"]

    def test_payment_record(self, ready, counselor, unis):
        _place(ready, "OFFER_RECEIVED")
        _shortlist(ready, unis[:1])
        result = phase_service.change_phase(ready, "INITIAL_PAYMENT", counselor,
                                            data={"payment_amount": "1500.50", "payment_type": "half"})
        assert result["captured"]["payment"] == {"amount": 1500.5, "payment_type": "HALF"}
        rec = PaymentRecord.query.filter_by(student_id=ready.id).one()
        assert rec.payment_type == "HALF"

    def test_bad_payment_type(self, ready, counselor, unis):
        _place(ready, "OFFER_RECEIVED")
        _shortlist(ready, unis[:1])
        with pytest.raises(CRMError) as exc:
            phase_service.change_phase(ready, "INITIAL_PAYMENT", counselor, data={"payment_type": "ALL"})
        assert "payment_type" in exc.value.message

    def test_marketing_owner_notified(self, ready, counselor, marketing):
        ready.marketing_owner_id = marketing.id
        db.session.commit()
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor)
        n = Notification.query.filter_by(user_id=marketing.id).one()
        assert n.type == "phase_change"
        assert n.student_id == ready.id


class TestCountryProfiles:

    def test_metadata_advances(self, ready, counselor):
        _profile(ready)
        result = phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor, country=COUNTRY)
        assert result["country_profile"]["current_phase"] == "UNIVERSITY_SHORTLISTING"
        assert _meta(ready, "DOCUMENT_COLLECTION").status == "Completed"
        assert _meta(ready, "UNIVERSITY_SHORTLISTING").status == "Current"
        # global phase untouched
        assert result["student"]["current_phase"] == "DOCUMENT_COLLECTION"

    def test_country_scope_keeps_selections_apart(self, ready, counselor, unis):
        _profile(ready)
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor, country=COUNTRY,
                                   data={"selected_universities": [unis[0].id]})
        snap = phase_service.pipeline_snapshot(ready)
        assert snap["selections"] == {}
        snap = phase_service.pipeline_snapshot(ready, COUNTRY)
        assert [s["university_id"] for s in snap["selections"]["SHORTLIST"]] == [unis[0].id]
        assert snap["current_phase"] == "UNIVERSITY_SHORTLISTING"

    def test_locked_target_rejected(self, ready, counselor):
        _profile(ready)
        db.session.add(PhaseMetadata(student_id=ready.id, country=COUNTRY, phase_name="UNIVERSITY_SHORTLISTING",
                                     status="Locked", final_edit_allowed=False))
        db.session.commit()
        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor, country=COUNTRY)
        assert exc.value.payload["status"] == "Locked"

    def test_phase_metadata_lists_every_step(self, ready, counselor):
        _profile(ready)
        data = phase_service.phase_metadata(ready, COUNTRY)
        names = [p["phase_name"] for p in data["phases"]]
        assert names[-2:] == ["VISA_DECISION", "ENROLLMENT"]
        assert data["phases"][0]["status"] == "Current"
        assert data["phases"][1] == {
            "phase_name": "UNIVERSITY_SHORTLISTING", "status": "Pending", "reopen_count": 0,
            "max_reopen_allowed": 2, "final_edit_allowed": True, "edits_left": 3,
            "label": "University Shortlisting",
        }


class TestReopen:

    @pytest.fixture
    def at_submission(self, ready, counselor, unis):
        _profile(ready)
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor, country=COUNTRY,
                                   data={"selected_universities": [u.id for u in unis]})
        phase_service.change_phase(ready, "APPLICATION_SUBMISSION", counselor, country=COUNTRY)
        return ready

    def test_counselor_needs_country(self, at_submission, counselor):
        with pytest.raises(Forbidden) as exc:
            phase_service.reopen_phase(at_submission, "UNIVERSITY_SHORTLISTING", None, counselor)
        assert "admins" in exc.value.message

    def test_admin_reopens_global_pipeline(self, ready, admin):
        _place(ready, "APPLICATION_SUBMISSION")
        result = phase_service.reopen_phase(ready, "UNIVERSITY_SHORTLISTING", None, admin)
        assert result["previous_phase"] == "APPLICATION_SUBMISSION"
        assert result["student"]["current_phase"] == "UNIVERSITY_SHORTLISTING"
        event = PhaseEvent.query.filter_by(student_id=ready.id, kind="REOPEN").one()
        assert event.country is None
        assert Activity.query.filter_by(type="PHASE_REOPEN").count() == 1

    def test_admin_global_reopen_only_goes_back(self, ready, admin):
        _place(ready, "UNIVERSITY_SHORTLISTING")
        with pytest.raises(CRMError):
            phase_service.reopen_phase(ready, "APPLICATION_SUBMISSION", None, admin)

    def test_reopen_moves_back_and_resets_later(self, at_submission, counselor):
        result = phase_service.reopen_phase(at_submission, "UNIVERSITY_SHORTLISTING", COUNTRY, counselor)
        assert result["previous_phase"] == "APPLICATION_SUBMISSION"
        assert result["country_profile"]["current_phase"] == "UNIVERSITY_SHORTLISTING"
        assert result["phase"]["reopen_count"] == 1
        assert result["edits_left"] == 2
        assert result["is_final_edit"] is False
        assert _meta(at_submission, "APPLICATION_SUBMISSION").status == "Pending"
        assert Activity.query.filter_by(type="PHASE_REOPEN").count() == 1

    def test_cannot_reopen_pending_phase(self, at_submission, counselor):
        phase_service.reopen_phase(at_submission, "UNIVERSITY_SHORTLISTING", COUNTRY, counselor)
        with pytest.raises(CRMError) as exc:
            phase_service.reopen_phase(at_submission, "APPLICATION_SUBMISSION", COUNTRY, counselor)
        assert "not been started" in exc.value.message

    def test_cannot_reopen_forward(self, at_submission, counselor):
        with pytest.raises(CRMError):
            phase_service.reopen_phase(at_submission, "APPLICATION_SUBMISSION", COUNTRY, counselor)

    def test_lock_after_max_reopens(self, at_submission, counselor):
        for _ in range(2):
            phase_service.reopen_phase(at_submission, "UNIVERSITY_SHORTLISTING", COUNTRY, counselor)
            phase_service.change_phase(at_submission, "APPLICATION_SUBMISSION", counselor, country=COUNTRY)

        meta = _meta(at_submission, "UNIVERSITY_SHORTLISTING")
        assert meta.reopen_count == 2
        assert meta.status == "Completed"

        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.reopen_phase(at_submission, "UNIVERSITY_SHORTLISTING", COUNTRY, counselor)
        assert "permanently locked" in exc.value.message
        db.session.expire_all()
        assert _meta(at_submission, "UNIVERSITY_SHORTLISTING").status == "Locked"

        with pytest.raises(PhaseTransitionError) as exc:
            phase_service.reopen_phase(at_submission, "UNIVERSITY_SHORTLISTING", COUNTRY, counselor)
        assert exc.value.payload["status"] == "Locked"


class TestPushes:

    def test_change_pushes_phase_update(self, ready, counselor, pushes):
        phase_service.change_phase(ready, "UNIVERSITY_SHORTLISTING", counselor)
        assert ("student_phase_update", realtime.counselor_room(counselor.id)) in pushes

    def test_rejected_change_pushes_nothing(self, student, counselor, pushes):
        with pytest.raises(PhaseTransitionError):
            phase_service.change_phase(student, "UNIVERSITY_SHORTLISTING", counselor)
        assert pushes == []

    def test_reopen_pushes_phase_update(self, ready, admin, counselor, pushes):
        _place(ready, "APPLICATION_SUBMISSION")
        phase_service.reopen_phase(ready, "UNIVERSITY_SHORTLISTING", None, admin)
        assert ("student_phase_update", realtime.counselor_room(counselor.id)) in pushes
