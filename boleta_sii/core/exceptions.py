"""
BOLETA-SII — Error taxonomy
Every pipeline failure is one of these; main.py maps them to HTTP responses.
"""

from typing import Optional


class BoletaError(Exception):
    """Base class for all boleta pipeline errors."""
    status_code = 500
    default_code = "BOLETA_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(self.message)


class ValidationError(BoletaError):
    """Input constraint violated. `errors` lists every offending field."""
    status_code = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, errors: list[str], code: Optional[str] = None):
        self.errors = list(errors)
        super().__init__("Datos de boleta inválidos: " + "; ".join(self.errors), code)


class ConfigurationError(BoletaError):
    """Missing or unusable configuration (certificate, emisor data)."""
    status_code = 500
    default_code = "CONFIG_ERROR"

    def __init__(self, message: str, errors: Optional[list[str]] = None,
                 code: Optional[str] = None):
        self.errors = list(errors or [])
        super().__init__(message, code)


class SigningError(BoletaError):
    status_code = 422
    default_code = "SIGN_ERROR"


class SubmissionError(BoletaError):
    """
    The SII rejected the boleta or could not be reached.
    Carries the authority's own code/description verbatim for audit.
    """
    status_code = 502
    default_code = "SII_SUBMISSION_ERROR"

    def __init__(self, message: str, *, estado: Optional[str] = None,
                 codigo_rechazo: Optional[str] = None,
                 glosa_rechazo: Optional[str] = None,
                 track_id: Optional[str] = None,
                 boleta_id: Optional[int] = None,
                 raw: Optional[str] = None,
                 code: Optional[str] = None):
        self.estado = estado
        self.codigo_rechazo = codigo_rechazo
        self.glosa_rechazo = glosa_rechazo
        self.track_id = track_id
        self.boleta_id = boleta_id
        self.raw = raw
        super().__init__(message, code)


class NotFoundError(BoletaError):
    status_code = 404
    default_code = "NOT_FOUND"
