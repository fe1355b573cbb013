# services/errors.py
"""
Domain errors raised by services and routes.

The error handler registered in ``app.create_app`` renders every
``CRMError`` as::

    {"success": false, "message": "...", **payload}
"""


class CRMError(Exception):
    status = 400

    def __init__(self, message, status=None, payload=None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.payload = dict(payload or {})

    def to_dict(self):
        return {"success": False, "message": self.message, **self.payload}


class NotFound(CRMError):
    status = 404


class Forbidden(CRMError):
    status = 403


class Conflict(CRMError):
    status = 409


class PhaseTransitionError(CRMError):
    """Raised when a phase cannot be entered or left."""

    def __init__(self, message, missing_documents=None, document_details=None,
                 phase_name=None, phase_description=None, country=None, **extra):
        payload = {
            "missing_documents": list(missing_documents or []),
            "document_details": list(document_details or []),
            "phase_name": phase_name,
            "phase_description": phase_description,
            "country": country,
        }
        payload.update(extra)
        super().__init__(message, status=400, payload=payload)
        self.missing_documents = payload["missing_documents"]
