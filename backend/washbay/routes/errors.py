# Overview: Maps domain exceptions to JSON error responses.

from flask import jsonify

from ..services.invoice_service import AlreadyInvoiced, ConstraintViolation
from ..services.lifecycle_service import InvalidStage, InvalidTransition
from ..validation import ConflictError, NotFoundError, ValidationError


# Most specific first
DOMAIN_ERRORS = (
    NotFoundError,
    InvalidStage,
    InvalidTransition,
    AlreadyInvoiced,
    ConstraintViolation,
    ConflictError,
    ValidationError,
)

_STATUS = (
    (NotFoundError, 404),
    (InvalidStage, 400),
    (InvalidTransition, 409),
    (ConflictError, 409),
    (ValidationError, 400),
)


def error_response(exc: Exception):
    for exc_type, status in _STATUS:
        if isinstance(exc, exc_type):
            return jsonify({"error": str(exc)}), status
    return jsonify({"error": str(exc)}), 400
