"""
BOLETA-SII — SII reply parsing
The SII upload/status endpoints answer either JSON or free text (HTML or
XML fragments such as "<TRACKID>123</TRACKID>"). decode_reply() tags the
body once; the parse_* functions turn either variant into one outcome type.

Text markers recognized:
- TRACKID <digits>                     -> track id
- RECHAZADO / ERROR                    -> rejected upload
- ACEPTADO / OK, REPARO                -> accepted status
- PROCESANDO / RECIBIDO                -> still processing
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

logger = logging.getLogger(__name__)


class SubmissionStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PROCESSING = "processing"
    ERROR = "error"


@dataclass(frozen=True)
class JsonReply:
    data: dict
    raw: str


@dataclass(frozen=True)
class TextReply:
    text: str

    @property
    def raw(self) -> str:
        return self.text


Reply = Union[JsonReply, TextReply]


@dataclass(frozen=True)
class UploadOutcome:
    status: SubmissionStatus
    message: str
    track_id: Optional[str] = None
    codigo_rechazo: Optional[str] = None
    glosa_rechazo: Optional[str] = None
    raw: Optional[str] = None


@dataclass(frozen=True)
class QueryOutcome:
    status: SubmissionStatus
    message: str
    track_id: Optional[str] = None
    errores: list = field(default_factory=list)
    fecha_recepcion: Optional[str] = None
    fecha_procesamiento: Optional[str] = None
    raw: Optional[str] = None
    # True when the SII was never reached (timeout, connection refused)
    network_failure: bool = False


_TRACK_ID = re.compile(r"TRACKID>?\s*:?\s*(\d+)", re.IGNORECASE)
_STATUS_CODE = re.compile(r"<STATUS>\s*(\d+)\s*</STATUS>", re.IGNORECASE)
_REJECTION = re.compile(r"\b(RECHAZADO|ERROR)\b", re.IGNORECASE)


def decode_reply(body: str) -> Reply:
    """JSON first; anything that is not a JSON object is scanned as text."""
    text = body or ""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return TextReply(text)
    if isinstance(data, dict):
        return JsonReply(data=data, raw=text)
    return TextReply(text)


def _str_or_none(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# ─────────────────────────────────────────────────────────────
# UPLOAD
# ─────────────────────────────────────────────────────────────

def parse_upload_reply(body: str) -> UploadOutcome:
    reply = decode_reply(body)
    if isinstance(reply, JsonReply):
        return _upload_from_json(reply)
    return _upload_from_text(reply)


def _upload_from_json(reply: JsonReply) -> UploadOutcome:
    data = reply.data
    status = str(data.get("status", "")).upper()
    estado = str(data.get("estado", "")).upper()
    track_id = _str_or_none(data.get("trackId") or data.get("track_id") or data.get("trackid"))

    if status == "OK" or estado == "ACEPTADO":
        if not track_id:
            # Without a track id the boleta could never be polled
            logger.warning("SII accepted the upload but returned no track id")
            return UploadOutcome(
                status=SubmissionStatus.ERROR,
                message="El SII aceptó el envío sin entregar Track ID",
                codigo_rechazo="ERR_NO_TRACKID",
                raw=reply.raw,
            )
        return UploadOutcome(
            status=SubmissionStatus.ACCEPTED,
            message=data.get("mensaje") or "DTE recibido por el SII",
            track_id=track_id,
            raw=reply.raw,
        )

    rejected = estado == "RECHAZADO" or status == "RECHAZADO"
    return UploadOutcome(
        status=SubmissionStatus.REJECTED if rejected else SubmissionStatus.ERROR,
        message=data.get("mensaje") or data.get("glosa") or "Error desconocido del SII",
        track_id=track_id,
        codigo_rechazo=_str_or_none(data.get("codigo")),
        glosa_rechazo=_str_or_none(data.get("glosa") or data.get("mensaje")),
        raw=reply.raw,
    )


def _upload_from_text(reply: TextReply) -> UploadOutcome:
    text = reply.text
    track = _TRACK_ID.search(text)
    status_code = _STATUS_CODE.search(text)

    # A non-zero <STATUS> or a rejection keyword wins over a track id
    rejected = _REJECTION.search(text)
    if status_code and status_code.group(1) != "0":
        return UploadOutcome(
            status=SubmissionStatus.REJECTED,
            message=f"SII rechazó el envío (STATUS {status_code.group(1)})",
            codigo_rechazo=status_code.group(1),
            glosa_rechazo=text.strip()[:500],
            raw=text,
        )
    if rejected and not track:
        return UploadOutcome(
            status=SubmissionStatus.REJECTED,
            message="SII rechazó el envío",
            codigo_rechazo=rejected.group(1).upper(),
            glosa_rechazo=text.strip()[:500],
            raw=text,
        )
    if track:
        return UploadOutcome(
            status=SubmissionStatus.ACCEPTED,
            message="DTE recibido por el SII",
            track_id=track.group(1),
            raw=text,
        )
    return UploadOutcome(
        status=SubmissionStatus.ERROR,
        message="Respuesta del SII no reconocida",
        codigo_rechazo="ERR_PARSE",
        glosa_rechazo=text.strip()[:500] or None,
        raw=text,
    )


# ─────────────────────────────────────────────────────────────
# STATUS QUERY
# ─────────────────────────────────────────────────────────────

_ESTADOS_JSON = {
    "ACEPTADO": SubmissionStatus.ACCEPTED,
    "OK": SubmissionStatus.ACCEPTED,
    "REPARO": SubmissionStatus.ACCEPTED,
    "ACEPTADO CON REPAROS": SubmissionStatus.ACCEPTED,
    "RECHAZADO": SubmissionStatus.REJECTED,
    "PROCESANDO": SubmissionStatus.PROCESSING,
    "RECIBIDO": SubmissionStatus.PROCESSING,
}


def parse_query_reply(body: str, track_id: Optional[str] = None) -> QueryOutcome:
    reply = decode_reply(body)
    if isinstance(reply, JsonReply):
        return _query_from_json(reply, track_id)
    return _query_from_text(reply, track_id)


def _normalize_errores(errores) -> list[dict]:
    out = []
    for e in errores or []:
        if isinstance(e, dict):
            out.append({
                "codigo": _str_or_none(e.get("codigo")),
                "descripcion": _str_or_none(e.get("descripcion") or e.get("glosa")),
            })
        else:
            out.append({"codigo": None, "descripcion": str(e)})
    return out


def _query_from_json(reply: JsonReply, track_id: Optional[str]) -> QueryOutcome:
    data = reply.data
    estado = str(data.get("estado") or data.get("status") or "").upper()
    status = _ESTADOS_JSON.get(estado)
    if status is None:
        return QueryOutcome(
            status=SubmissionStatus.ERROR,
            message=f"Estado SII desconocido: {estado or '(vacío)'}",
            track_id=track_id,
            errores=[{"codigo": "ERR_PARSE", "descripcion": "Estado no reconocido"}],
            raw=reply.raw,
        )
    return QueryOutcome(
        status=status,
        message=data.get("mensaje") or estado,
        track_id=track_id,
        errores=_normalize_errores(data.get("errores")),
        fecha_recepcion=_str_or_none(data.get("fecha_recepcion")),
        fecha_procesamiento=_str_or_none(data.get("fecha_procesamiento")),
        raw=reply.raw,
    )


def _query_from_text(reply: TextReply, track_id: Optional[str]) -> QueryOutcome:
    upper = reply.text.upper()
    if "RECHAZADO" in upper:
        return QueryOutcome(
            status=SubmissionStatus.REJECTED,
            message="DTE rechazado por el SII",
            track_id=track_id,
            errores=[{"codigo": "RECHAZADO", "descripcion": reply.text.strip()[:500]}],
            raw=reply.text,
        )
    if "ACEPTADO" in upper or "REPARO" in upper or re.search(r"\bOK\b", upper):
        return QueryOutcome(
            status=SubmissionStatus.ACCEPTED,
            message="DTE aceptado por el SII",
            track_id=track_id,
            raw=reply.text,
        )
    if "PROCESANDO" in upper or "RECIBIDO" in upper:
        return QueryOutcome(
            status=SubmissionStatus.PROCESSING,
            message="DTE en proceso de validación",
            track_id=track_id,
            raw=reply.text,
        )
    return QueryOutcome(
        status=SubmissionStatus.ERROR,
        message="Respuesta del SII no reconocida",
        track_id=track_id,
        errores=[{"codigo": "ERR_PARSE", "descripcion": "No se pudo interpretar la respuesta"}],
        raw=reply.text,
    )
