# app.py
import logging

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from config import Config
from extensions import cache, db, jwt, migrate, socketio
from services.errors import CRMError

# ---- blueprints ----
from routes.auth import auth_bp
from routes.students import students_bp
from routes.phases import phases_bp
from routes.country_profiles import country_profiles_bp
from routes.countries import countries_bp
from routes.applications import applications_bp
from routes.documents import documents_bp
from routes.tasks import tasks_bp
from routes.notes import notes_bp
from routes.reminders import reminders_bp
from routes.notifications import notifications_bp
from routes.messages import messages_bp
from routes.dashboard import dashboard_bp
from routes.universities import universities_bp
from routes.users import users_bp

load_dotenv()

logger = logging.getLogger(__name__)

BLUEPRINTS = [
    auth_bp,
    students_bp,
    phases_bp,
    country_profiles_bp,
    countries_bp,
    applications_bp,
    documents_bp,
    tasks_bp,
    notes_bp,
    reminders_bp,
    notifications_bp,
    messages_bp,
    dashboard_bp,
    universities_bp,
    users_bp,
]


def _register_error_handlers(app):
    @app.errorhandler(CRMError)
    def handle_crm_error(e):
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        db.session.rollback()
        logger.warning("integrity error: %s", e.orig)
        return jsonify({"success": False, "message": "Conflicting or invalid reference data"}), 409

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        logger.exception("database error")
        return jsonify({"success": False, "message": "Database error"}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"success": False, "message": e.description}), e.code


def create_app(config_object=Config, **overrides):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.config.update(overrides)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # ---- extensions ----
    db.init_app(app)
    from models.user import User  # noqa: F401
    from models.student import Student  # noqa: F401
    from models.university import University  # noqa: F401
    from models.country import Country, CountryProcess  # noqa: F401
    from models.country_profile import CountryProfile, PhaseEvent, PhaseMetadata  # noqa: F401
    from models.pipeline_record import PaymentRecord, PhaseDecision, UniversitySelection  # noqa: F401
    from models.application import Application  # noqa: F401
    from models.document import Document  # noqa: F401
    from models.task import Task  # noqa: F401
    from models.note import Note  # noqa: F401
    from models.reminder import Reminder  # noqa: F401
    from models.notification import Notification  # noqa: F401
    from models.message import Message  # noqa: F401
    from models.activity import Activity  # noqa: F401

    jwt.init_app(app)
    migrate.init_app(app, db)
    cache.init_app(app)

    # ---- CORS ----
    CORS(
        app,
        resources={
            r"/api/*": {
                "origins": app.config["CORS_ORIGINS"],
                "supports_credentials": True,
                "allow_headers": ["Content-Type", "Authorization"],
                "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            }
        },
    )

    socketio.init_app(
        app,
        cors_allowed_origins=app.config["CORS_ORIGINS"],
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE", "threading"),
    )
    import services.realtime  # noqa: F401  socket event handlers

    # ---- blueprints ----
    for bp in BLUEPRINTS:
        app.register_blueprint(bp)

    _register_error_handlers(app)

    # ---- health ----
    @app.get("/")
    @app.get("/api/health")
    def health():
        try:
            db.session.execute(text("SELECT 1"))
            db_ok = True
        except SQLAlchemyError as e:
            logger.warning("health check: database unreachable: %s", e)
            db.session.rollback()
            db_ok = False
        return jsonify({
            "status": "ok" if db_ok else "degraded",
            "database": "ok" if db_ok else "unreachable",
            "cache": ("redis" if cache.is_redis else "memory") if cache.ping() else "unreachable",
        }), 200 if db_ok else 503

    if app.config.get("REMINDER_SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        from services.reminder_scheduler import start_scheduler
        start_scheduler(app)

    return app


if __name__ == "__main__":
    application = create_app()
    socketio.run(application, host="0.0.0.0", port=5000, allow_unsafe_werkzeug=True)
