# services/phases.py
"""
Phase tables and pure helpers for the admissions pipeline.

Nothing here touches the database; ``services.phase_service`` loads the
student's documents / selections and feeds them through these helpers.
"""
from __future__ import annotations

# ==== Phases ====

PHASES = [
    "DOCUMENT_COLLECTION",
    "UNIVERSITY_SHORTLISTING",
    "APPLICATION_SUBMISSION",
    "OFFER_RECEIVED",
    "INITIAL_PAYMENT",
    "INTERVIEW",
    "FINANCIAL_TB_TEST",
    "CAS_VISA",
    "VISA_APPLICATION",
    "ENROLLMENT",
]

PHASE_LABELS = {
    "DOCUMENT_COLLECTION": "Document Collection",
    "UNIVERSITY_SHORTLISTING": "University Shortlisting",
    "APPLICATION_SUBMISSION": "Application Submission",
    "OFFER_RECEIVED": "Offer Received",
    "INITIAL_PAYMENT": "Initial Payment",
    "INTERVIEW": "Interview",
    "FINANCIAL_TB_TEST": "Financial & TB Test",
    "CAS_VISA": "CAS Process",
    "VISA_APPLICATION": "Visa Process",
    "VISA_DECISION": "Visa Decision",
    "ENROLLMENT": "Enrollment",
}

# used for a country that has no configured process
DEFAULT_COUNTRY_PHASES = PHASES[:-1] + ["VISA_DECISION", "ENROLLMENT"]

# ==== Document requirements ====

_BASE = ["PASSPORT", "ACADEMIC_TRANSCRIPT"]
_WITH_ENGLISH = _BASE + ["ENGLISH_TEST_SCORE"]
_WITH_FINANCE = _WITH_ENGLISH + ["FINANCIAL_STATEMENT"]
_WITH_MEDICAL = _WITH_FINANCE + ["MEDICAL_CERTIFICATE"]

PHASE_REQUIREMENTS = {
    "DOCUMENT_COLLECTION": _BASE + ["RECOMMENDATION_LETTER", "STATEMENT_OF_PURPOSE", "CV_RESUME"],
    "UNIVERSITY_SHORTLISTING": list(_BASE),
    "APPLICATION_SUBMISSION": list(_WITH_ENGLISH),
    "OFFER_RECEIVED": list(_WITH_ENGLISH),
    "OFFER_LETTER_AUSTRALIA": [],
    "INITIAL_PAYMENT": list(_WITH_FINANCE),
    "INTERVIEW": list(_WITH_FINANCE),
    "FINANCIAL_TB_TEST": list(_WITH_MEDICAL),
    "CAS_VISA": list(_WITH_MEDICAL),
    "VISA_APPLICATION": list(_WITH_MEDICAL),
    "ENROLLMENT": ["ID_CARD", "ENROLLMENT_LETTER"],
}

# country key -> phase label (as configured in the country process) -> documents
COUNTRY_DOCUMENT_REQUIREMENTS = {
    "usa": {
        "Offer Received": ["I_20_FORM"],
        "SEVIS Fee Payment": ["SEVIS_FEE_RECEIPT"],
        "Visa Application (F-1) – DS-160 + Biometrics": [
            "DS_160_CONFIRMATION", "VISA_APPOINTMENT_CONFIRMATION",
            "BANK_STATEMENTS", "SPONSOR_AFFIDAVIT", "INCOME_PROOF",
        ],
    },
    "uk": {
        "Visa Process": ["TB_TEST_CERTIFICATE", "BANK_STATEMENTS", "TUITION_FEE_RECEIPT"],
    },
    "germany": {
        "Blocked Account + Health Insurance": ["BLOCKED_ACCOUNT_PROOF", "HEALTH_INSURANCE"],
        "Visa Application – National D Visa": ["APS_CERTIFICATE", "VISA_APPLICATION", "BIOMETRICS"],
    },
    "canada": {
        "Letter of Acceptance (LOA)": ["LOA"],
        "Initial Payment": ["TUITION_FEE_RECEIPT"],
        "Study Permit Application": ["GIC_CERTIFICATE", "BANK_STATEMENTS", "MEDICAL_EXAM", "BIOMETRICS"],
    },
    "australia": {
        "OSHC + Tuition Deposit": ["OSHC", "TUITION_FEE_RECEIPT"],
        "eCOE Issued": ["ECOE"],
        "Visa Application (Subclass 500)": ["FINANCIAL_PROOF", "VISA_APPLICATION", "BIOMETRICS"],
    },
    "ireland": {
        "Initial Tuition Payment": ["TUITION_FEE_RECEIPT"],
        "Visa Application": ["BANK_STATEMENT", "MEDICAL_INSURANCE"],
    },
    "france": {
        "Application Submission (Campus France / Direct)": ["CAMPUS_FRANCE_REGISTRATION", "INTERVIEW_ACKNOWLEDGEMENT"],
        "Visa Application – VFS France": ["TUITION_FEE_RECEIPT", "OFII_FORM", "BIOMETRICS"],
    },
    "italy": {
        "Pre-Enrollment on Universitaly Portal": ["UNIVERSITALY_RECEIPT"],
        "Visa Application – Type D (Long Stay)": ["FINANCIAL_PROOF", "ACCOMMODATION_PROOF", "VISA_APPLICATION"],
    },
    "greece": {
        "Initial Tuition Payment": ["TUITION_FEE_RECEIPT"],
        "Visa Application (National Visa – Type D)": ["FINANCIAL_PROOF", "ACCOMMODATION_PROOF", "VISA_APPLICATION"],
    },
    "denmark": {
        "Tuition Fee Payment": ["TUITION_FEE_RECEIPT"],
        "Residence Permit Application": ["FINANCIAL_PROOF", "BIOMETRICS"],
    },
    "finland": {
        "Tuition Fee Payment": ["TUITION_FEE_RECEIPT"],
        "Residence Permit Application": ["FINANCIAL_PROOF", "BIOMETRICS"],
    },
    "singapore": {
        "Student Pass Application (IPA)": ["IPA_LETTER"],
        "Student Pass Issuance": ["MEDICAL_REPORT"],
    },
    "uae": {
        "Student Visa Processing": ["STUDENT_VISA_APPROVAL", "MEDICAL_TEST", "EMIRATES_ID_APPLICATION"],
    },
    "malta": {
        "Initial Payment": ["TUITION_FEE_RECEIPT"],
        "Visa Application (National Visa – Type D)": ["BANK_STATEMENTS", "ACCOMMODATION_PROOF", "MEDICAL_INSURANCE"],
    },
}

DOCUMENT_DESCRIPTIONS = {
    "PASSPORT": "Valid passport with at least 6 months validity",
    "ACADEMIC_TRANSCRIPT": "Official academic transcripts from previous institutions",
    "RECOMMENDATION_LETTER": "Recommendation letters from professors or employers",
    "STATEMENT_OF_PURPOSE": "Statement of Purpose (SOP) explaining your academic and career goals",
    "CV_RESUME": "Updated CV or Resume highlighting your qualifications and experience",
    "ENGLISH_TEST_SCORE": "IELTS, TOEFL, or equivalent English proficiency test results",
    "FINANCIAL_STATEMENT": "Bank statements showing sufficient funds for tuition and living expenses",
    "MEDICAL_CERTIFICATE": "Medical examination certificate and TB test results",
    "ID_CARD": "Student ID card (front and back if applicable)",
    "ENROLLMENT_LETTER": "Official enrollment/registration letter from the institution",
    "OFFER_LETTER": "Official offer letter issued by the university for this application",
}

PHASE_DESCRIPTIONS = {
    "UNIVERSITY_SHORTLISTING": "To proceed with university selection, we need basic identification and academic records.",
    "APPLICATION_SUBMISSION": "For university applications, English proficiency proof is required.",
    "INITIAL_PAYMENT": "Before making payments, financial documentation is required to verify funding.",
    "INTERVIEW": "Interview preparation requires all previous documents plus financial verification.",
    "FINANCIAL_TB_TEST": "Visa preparation requires medical examination and TB test results.",
    "CAS_VISA": "CAS and visa processing requires complete medical and financial documentation.",
    "VISA_APPLICATION": "Visa Process requires all supporting documents including medical certificates.",
    "ENROLLMENT": "Final enrollment requires student ID card and enrollment letter.",
}

# ==== Country keys ====

_COUNTRY_ALIASES = {
    "UK": "uk", "U.K.": "uk", "U.K": "uk", "UNITED KINGDOM": "uk",
    "GREAT BRITAIN": "uk", "ENGLAND": "uk",
    "USA": "usa", "U.S.A.": "usa", "U.S.": "usa", "US": "usa",
    "UNITED STATES": "usa", "UNITED STATES OF AMERICA": "usa",
    "UAE": "uae", "U.A.E.": "uae", "UNITED ARAB EMIRATES": "uae", "DUBAI": "uae",
}


def normalize_country_key(name):
    """'United Kingdom' / 'U.K.' -> 'uk'; other names are lower-cased."""
    if not name:
        return None
    name = str(name).strip()
    if not name:
        return None
    return _COUNTRY_ALIASES.get(name.upper(), name.lower())


# ==== Steps ====

def phase_label(key, steps=None):
    for s in steps or []:
        if s.get("key") == key and s.get("label"):
            return s["label"]
    return PHASE_LABELS.get(key) or key.replace("_", " ").title()


def normalize_steps(raw):
    """
    Accept ``["KEY", ...]`` or ``[{"key": ..., "label": ...}, ...]`` and
    return a list of dicts that always carry ``key`` and ``label``.
    """
    out = []
    for item in raw or []:
        if isinstance(item, str):
            step = {"key": item}
        elif isinstance(item, dict) and item.get("key"):
            step = dict(item)
        else:
            continue
        step["key"] = str(step["key"]).strip().upper()
        step.setdefault("label", phase_label(step["key"]))
        out.append(step)
    return out


def phase_steps(country=None, process=None):
    """Ordered steps for ``country`` (global phases when no country)."""
    if not country:
        return normalize_steps(PHASES)
    if process is not None:
        steps = normalize_steps(getattr(process, "steps", None))
        if steps:
            return steps
    return normalize_steps(DEFAULT_COUNTRY_PHASES)


def step_keys(steps):
    return [s["key"] for s in steps]


def find_step(steps, key):
    for s in steps or []:
        if s["key"] == key:
            return s
    return None


def phase_direction(steps, from_phase, to_phase):
    """1 forward, -1 backward, 0 same, None when either key is unknown."""
    keys = step_keys(steps)
    if from_phase not in keys or to_phase not in keys:
        return None
    a, b = keys.index(from_phase), keys.index(to_phase)
    return (b > a) - (b < a)


def next_phase(steps, key):
    """The step right after ``key``; None at the end or when ``key`` is unknown."""
    keys = step_keys(steps)
    if key not in keys:
        return None
    i = keys.index(key)
    return keys[i + 1] if i + 1 < len(keys) else None


def later_phases(steps, key):
    keys = step_keys(steps)
    if key not in keys:
        return []
    return keys[keys.index(key) + 1:]


# ==== Required documents ====

def required_documents(phase, country=None, steps=None):
    """
    Resolution order:
      1. explicit ``required_documents`` on the configured step
      2. COUNTRY_DOCUMENT_REQUIREMENTS[country][step label]
      3. PHASE_REQUIREMENTS[phase]
    """
    step = find_step(steps, phase)
    if step is not None and step.get("required_documents") is not None:
        return list(step["required_documents"])

    if country:
        by_label = COUNTRY_DOCUMENT_REQUIREMENTS.get(normalize_country_key(country) or "", {})
        docs = by_label.get(phase_label(phase, steps))
        if docs:
            return list(docs)

    return list(PHASE_REQUIREMENTS.get(phase, []))


def missing_documents(required, uploaded_types):
    have = set(uploaded_types or [])
    return [t for t in required if t not in have]


def document_details(doc_types):
    return [
        {"type": t, "description": DOCUMENT_DESCRIPTIONS.get(t, "Required document")}
        for t in doc_types
    ]


def phase_description(phase, country=None, steps=None):
    if phase in PHASE_DESCRIPTIONS:
        return PHASE_DESCRIPTIONS[phase]
    if country:
        return f"Required documents for {country} {phase_label(phase, steps)} phase"
    return ""


# ==== Transitions ====

INTERVIEW_VALUES = ["APPROVED", "REFUSED", "STOPPED"]
VISA_DECISION_VALUES = ["APPROVED", "REJECTED"]
FINANCIAL_OPTIONS = ["LOAN", "SELF_AMOUNT", "OTHERS"]

PAYMENT_PHASES = {
    "INITIAL_PAYMENT",
    "DEPOSIT_I20",
    "SEVIS_FEE",
    "GIC_OPTIONAL",
    "OSHC_TUITION_DEPOSIT",
    "INITIAL_TUITION_PAYMENT",
    "TUITION_FEE_PAYMENT",
    "ACCEPT_OFFER_PAY_DEPOSIT",
    "BLOCKED_ACCOUNT_HEALTH",
}

PAYMENT_TYPES = ["INITIAL", "HALF", "COMPLETE"]

# to_phase -> what the request may (or must) carry when entering / updating it.
#   selection         kind of university_selections row written
#   selection_field   request key ("selected_universities" list or "selected_university" id)
#   selection_source  kinds the ids must come from, first non-empty wins;
#                     None means any active university
#   selection_required  the request must carry the selection
#   decision / decision_field / decision_values   phase_decisions row
#   decision_required   leaving the phase needs a recorded decision
#   proceed_values      decision values that allow leaving the phase
_OFFER = {
    "selection": "OFFER",
    "selection_field": "selected_universities",
    "selection_source": ["SUBMISSION", "SHORTLIST"],
    "selection_required": False,
}

TRANSITIONS = {
    "UNIVERSITY_SHORTLISTING": {
        "selection": "SHORTLIST",
        "selection_field": "selected_universities",
        "selection_source": None,
        "selection_required": False,
    },
    "APPLICATION_SUBMISSION": {
        "selection": "SUBMISSION",
        "selection_field": "selected_universities",
        "selection_source": ["SHORTLIST"],
        "selection_required": False,
    },
    "OFFER_RECEIVED": dict(_OFFER),
    "OFFER_LETTER_AUSTRALIA": dict(_OFFER),
    "INITIAL_PAYMENT": {
        "selection": "PAYMENT",
        "selection_field": "selected_university",
        "selection_source": ["OFFER", "SHORTLIST"],
        "selection_required": False,
    },
    "ENROLLMENT": {
        "selection": "ENROLLMENT",
        "selection_field": "selected_university",
        "selection_source": ["OFFER", "SHORTLIST"],
        "selection_required": True,
    },
    "INTERVIEW": {
        "decision": "INTERVIEW",
        "decision_field": "interview_status",
        "decision_values": INTERVIEW_VALUES,
        "decision_required": True,
        "proceed_values": ["APPROVED"],
    },
    "CAS_VISA": {
        "decision": "CAS_VISA",
        "decision_field": "cas_visa_status",
        "decision_values": INTERVIEW_VALUES,
        "decision_required": True,
        "proceed_values": ["APPROVED"],
    },
    "VISA_APPLICATION": {
        "decision": "VISA",
        "decision_field": "visa_status",
        "decision_values": INTERVIEW_VALUES,
        "decision_required": True,
        "proceed_values": ["APPROVED"],
    },
    "VISA_DECISION": {
        "decision": "VISA_DECISION",
        "decision_field": "visa_decision",
        "decision_values": VISA_DECISION_VALUES,
        "decision_required": True,
        "proceed_values": ["APPROVED"],
    },
    "FINANCIAL_TB_TEST": {
        "decision": "FINANCIAL_OPTION",
        "decision_field": "financial_option",
        "decision_values": FINANCIAL_OPTIONS,
        "decision_required": True,
        "proceed_values": FINANCIAL_OPTIONS,
    },
}


def is_payment_phase(key):
    if not key:
        return False
    key = key.upper()
    return key in PAYMENT_PHASES or any(w in key for w in ("PAYMENT", "FEE", "DEPOSIT"))


def transition_for(phase):
    """Transition rule for ``phase`` (empty dict when nothing is captured)."""
    rule = dict(TRANSITIONS.get(phase, {}))
    if not rule.get("decision") and phase and "VISA_DECISION" in phase:
        rule.update(TRANSITIONS["VISA_DECISION"])
    rule["payment"] = is_payment_phase(phase)
    return rule
