# init_db.py
"""Create all tables and seed countries, country processes and universities.

    python init_db.py            # create missing tables, seed missing rows
    python init_db.py --reset    # drop everything first
"""
import argparse

from app import create_app
from extensions import db
from models.country import Country, CountryProcess
from models.university import University

COUNTRIES = [
    ("United Kingdom", "GBR", "Europe"),
    ("USA", "USA", "North America"),
    ("Canada", "CAN", "North America"),
    ("Australia", "AUS", "Oceania"),
    ("Germany", "DEU", "Europe"),
    ("Ireland", "IRL", "Europe"),
    ("France", "FRA", "Europe"),
    ("Italy", "ITA", "Europe"),
    ("Greece", "GRC", "Europe"),
    ("Denmark", "DNK", "Europe"),
    ("Finland", "FIN", "Europe"),
    ("Singapore", "SGP", "Asia"),
    ("UAE", "ARE", "Middle East"),
    ("Malta", "MLT", "Europe"),
]

_HEAD = [
    {"key": "DOCUMENT_COLLECTION", "label": "Document Collection"},
    {"key": "UNIVERSITY_SHORTLISTING", "label": "University Shortlisting"},
    {"key": "APPLICATION_SUBMISSION", "label": "Application Submission"},
]
_TAIL = [
    {"key": "VISA_DECISION", "label": "Visa Decision"},
    {"key": "ENROLLMENT", "label": "Enrollment"},
]

# labels line up with the per-country document map in services/phases.py
PROCESSES = {
    "United Kingdom": ("GBR", _HEAD + [
        {"key": "OFFER_RECEIVED", "label": "Offer Received"},
        {"key": "INITIAL_PAYMENT", "label": "Initial Payment"},
        {"key": "INTERVIEW", "label": "Interview"},
        {"key": "FINANCIAL_TB_TEST", "label": "Financial & TB Test"},
        {"key": "CAS_VISA", "label": "CAS Process"},
        {"key": "VISA_APPLICATION", "label": "Visa Process"},
    ] + _TAIL, ["January", "May", "September"]),
    "USA": ("USA", _HEAD + [
        {"key": "OFFER_RECEIVED", "label": "Offer Received"},
        {"key": "DEPOSIT_I20", "label": "Deposit + I-20"},
        {"key": "SEVIS_FEE", "label": "SEVIS Fee Payment"},
        {"key": "VISA_APPLICATION", "label": "Visa Application (F-1) – DS-160 + Biometrics"},
    ] + _TAIL, ["Spring", "Fall"]),
    "Canada": ("CAN", _HEAD + [
        {"key": "OFFER_RECEIVED", "label": "Letter of Acceptance (LOA)"},
        {"key": "INITIAL_PAYMENT", "label": "Initial Payment"},
        {"key": "GIC_OPTIONAL", "label": "GIC (Optional)"},
        {"key": "VISA_APPLICATION", "label": "Study Permit Application"},
    ] + _TAIL, ["January", "May", "September"]),
    "Australia": ("AUS", _HEAD + [
        {"key": "OFFER_LETTER_AUSTRALIA", "label": "Offer Letter"},
        {"key": "OSHC_TUITION_DEPOSIT", "label": "OSHC + Tuition Deposit"},
        {"key": "ECOE", "label": "eCOE Issued"},
        {"key": "VISA_APPLICATION", "label": "Visa Application (Subclass 500)"},
    ] + _TAIL, ["February", "July"]),
    "Germany": ("DEU", _HEAD + [
        {"key": "OFFER_RECEIVED", "label": "Admission Letter"},
        {"key": "BLOCKED_ACCOUNT_HEALTH", "label": "Blocked Account + Health Insurance"},
        {"key": "VISA_APPLICATION", "label": "Visa Application – National D Visa"},
    ] + _TAIL, ["Summer", "Winter"]),
}

UNIVERSITIES = [
    ("University of Manchester", "United Kingdom", "Manchester", 34),
    ("University of Leeds", "United Kingdom", "Leeds", 75),
    ("Coventry University", "United Kingdom", "Coventry", None),
    ("Arizona State University", "USA", "Tempe", 179),
    ("Northeastern University", "USA", "Boston", 375),
    ("University of Toronto", "Canada", "Toronto", 21),
    ("University of Waterloo", "Canada", "Waterloo", 112),
    ("University of Melbourne", "Australia", "Melbourne", 14),
    ("Monash University", "Australia", "Melbourne", 42),
    ("Technical University of Munich", "Germany", "Munich", 37),
]


def seed():
    added = 0
    for name, code, region in COUNTRIES:
        if not Country.query.filter_by(code=code).first():
            db.session.add(Country(name=name, code=code, region=region))
            added += 1
    for country, (code, steps, intakes) in PROCESSES.items():
        if not CountryProcess.query.filter_by(country_code=code).first():
            db.session.add(CountryProcess(
                country=country, country_code=code, steps=steps, intake_terms=intakes,
            ))
            added += 1
    for name, country, city, ranking in UNIVERSITIES:
        if not University.query.filter_by(name=name).first():
            db.session.add(University(name=name, country=country, city=city, ranking=ranking))
            added += 1
    db.session.commit()
    return added


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="drop all tables first")
    args = parser.parse_args(argv)

    app = create_app()
    with app.app_context():
        if args.reset:
            print("Dropping all tables...")
            db.drop_all()
        print("Creating all tables...")
        db.create_all()
        print(f"Seeded {seed()} row(s). Done.")


if __name__ == "__main__":
    main()
