"""
BOLETA-SII: Modelo de documento tributario
==========================================
Representación canónica e inmutable de una boleta electrónica (DTE 39)
y el ciclo de vida de su envío al SII.
"""
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

TIPO_BOLETA_ELECTRONICA = 39
TASA_IVA = 19


class Emisor(BaseModel):
    model_config = {"frozen": True}

    rut: str
    razon_social: str
    giro: str
    actividad_economica: str
    direccion: str
    comuna: str
    ciudad: str


class Receptor(BaseModel):
    model_config = {"frozen": True}

    rut: str = "66666666-6"
    razon_social: str = "CLIENTE ANONIMO"
    giro: Optional[str] = None
    direccion: Optional[str] = None
    comuna: Optional[str] = None
    ciudad: Optional[str] = None


class LineItem(BaseModel):
    model_config = {"frozen": True}

    numero_linea: int = Field(..., ge=1)
    nombre: str
    descripcion: Optional[str] = None
    cantidad: float = Field(..., gt=0)
    unidad_medida: Optional[str] = "UN"
    precio_unitario: float = Field(..., gt=0)
    descuento_pct: float = Field(0, ge=0, le=100)
    monto_item: int
    exento: bool = False


class Totales(BaseModel):
    model_config = {"frozen": True}

    monto_neto: int
    monto_exento: int = 0
    iva: int
    monto_total: int


class TaxDocument(BaseModel):
    """One boleta. Totals are computed by BoletaBuilder from `detalles`."""
    model_config = {"frozen": True}

    tipo_dte: int = TIPO_BOLETA_ELECTRONICA
    folio: Optional[int] = None
    fecha_emision: date
    emisor: Emisor
    receptor: Optional[Receptor] = None
    detalles: tuple[LineItem, ...] = Field(..., min_length=1)
    totales: Totales
    ambiente: str = "certificacion"


class SignedDocument(BaseModel):
    """Serialized XML plus its signature. A re-sign yields a new instance."""
    model_config = {"frozen": True}

    xml: str
    signed_xml: str
    document_id: Optional[str] = None
    is_demo: bool = False


# ─────────────────────────────────────────────────────────────
# CICLO DE VIDA
# ─────────────────────────────────────────────────────────────

class EstadoBoleta(str, Enum):
    BORRADOR = "BORRADOR"
    ENVIADO = "ENVIADO"
    PROCESANDO = "PROCESANDO"
    ACEPTADO = "ACEPTADO"
    RECHAZADO = "RECHAZADO"
    ERROR = "ERROR"


_TERMINALES = frozenset()

ESTADO_TRANSICIONES: dict[EstadoBoleta, frozenset[EstadoBoleta]] = {
    EstadoBoleta.BORRADOR: frozenset({
        EstadoBoleta.ENVIADO, EstadoBoleta.RECHAZADO, EstadoBoleta.ERROR,
    }),
    EstadoBoleta.ENVIADO: frozenset({
        EstadoBoleta.PROCESANDO, EstadoBoleta.ACEPTADO,
        EstadoBoleta.RECHAZADO, EstadoBoleta.ERROR,
    }),
    EstadoBoleta.PROCESANDO: frozenset({
        EstadoBoleta.ACEPTADO, EstadoBoleta.RECHAZADO, EstadoBoleta.ERROR,
    }),
    EstadoBoleta.ACEPTADO: _TERMINALES,
    EstadoBoleta.RECHAZADO: _TERMINALES,
    EstadoBoleta.ERROR: _TERMINALES,
}


def can_transition(actual: EstadoBoleta | str, nuevo: EstadoBoleta | str) -> bool:
    """True when moving from `actual` to `nuevo` is a legal forward step."""
    actual, nuevo = EstadoBoleta(actual), EstadoBoleta(nuevo)
    return nuevo in ESTADO_TRANSICIONES[actual]


def is_terminal(estado: EstadoBoleta | str) -> bool:
    return not ESTADO_TRANSICIONES[EstadoBoleta(estado)]
