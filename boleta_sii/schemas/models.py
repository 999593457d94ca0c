"""
BOLETA-SII Pydantic Schemas
Request/response models for the API.
"""

from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Optional

from boleta_sii.core.config import SIIEnvironment
from boleta_sii.utils.sii_helpers import validate_rut


# ─────────────────────────────────────────────────────────────
# EMISIÓN
# ─────────────────────────────────────────────────────────────

class BoletaItemRequest(BaseModel):
    """One line of the boleta. Prices include IVA."""
    nombre: str = Field(..., min_length=1, max_length=300)
    descripcion: Optional[str] = Field(None, max_length=500)
    cantidad: float = Field(..., gt=0)
    precio_unitario: float = Field(..., gt=0, alias="precioUnitario")
    descuento_pct: float = Field(0, ge=0, le=100, alias="descuentoPct")
    exento: bool = False

    model_config = {"populate_by_name": True}


class ReceptorRequest(BaseModel):
    rut: Optional[str] = None
    razon_social: Optional[str] = Field(None, alias="razonSocial", max_length=100)

    model_config = {"populate_by_name": True}

    @field_validator("rut")
    @classmethod
    def _rut_valido(cls, v):
        if v and not validate_rut(v):
            raise ValueError(f"RUT inválido: {v}")
        return v


class BoletaRequest(BaseModel):
    """Request to generate and submit a boleta electrónica."""
    factura_id: Optional[int] = Field(None, gt=0)
    centro_id: int = Field(..., gt=0)
    receptor: Optional[ReceptorRequest] = None
    items: list[BoletaItemRequest] = Field(..., min_length=1, max_length=60)
    ambiente: Optional[SIIEnvironment] = None

    model_config = {"json_schema_extra": {
        "examples": [{
            "centro_id": 1,
            "receptor": {"rut": "66666666-6", "razonSocial": "CLIENTE ANONIMO"},
            "items": [{"nombre": "Consulta", "cantidad": 1, "precioUnitario": 25000}],
        }]
    }}


class BoletaResponse(BaseModel):
    success: bool
    mensaje: str
    boleta_id: int
    folio: int
    track_id: Optional[str] = None
    estado: str
    monto_neto: int
    monto_exento: int = 0
    monto_iva: int
    monto_total: int
    fecha_emision: str
    ambiente: str
    xml_generado: Optional[str] = Field(None, description="Solo en modo demo")
    xml_firmado: Optional[str] = Field(None, description="Solo en modo demo")


# ─────────────────────────────────────────────────────────────
# CONSULTA
# ─────────────────────────────────────────────────────────────

class ErrorSII(BaseModel):
    codigo: Optional[str] = None
    descripcion: Optional[str] = None


class StatusResponse(BaseModel):
    boleta_id: int
    track_id: str
    estado: str
    estado_anterior: str
    actualizado: bool
    estado_sii: str
    mensaje: str
    errores: list[ErrorSII] = Field(default_factory=list)
    fecha_emision: Optional[str] = None
    monto_total: Optional[float] = None
    ambiente: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# CONFIG / DIAGNÓSTICO
# ─────────────────────────────────────────────────────────────

class ConfigResponse(BaseModel):
    mode: str
    environment: str
    is_demo: bool
    emisor: dict
    upload_endpoint: str
    query_endpoint: str
    resolucion_numero: str
    resolucion_fecha: str
    configuracion_valida: bool
    errores: list[str] = Field(default_factory=list)


class ConnectionResponse(BaseModel):
    success: bool
    mensaje: str


class CertificateInfo(BaseModel):
    """Information about the loaded certificate."""
    subject: str
    issuer: str
    serial_number: str
    valid_from: str
    valid_to: str
    is_valid: bool
    is_demo: bool = False


# ─────────────────────────────────────────────────────────────
# GENERIC
# ─────────────────────────────────────────────────────────────

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str
    code: Optional[str] = None
    errores: Optional[list[str]] = None
    codigo_rechazo: Optional[str] = None
    glosa_rechazo: Optional[str] = None
    track_id: Optional[str] = None
    boleta_id: Optional[int] = None


class HealthResponse(BaseModel):
    """Health check."""
    status: str = "ok"
    version: str
    mode: str
    environment: str
    sii_upload_url: str
