"""
BOLETA-SII: Serializador XML DTE
================================
Serializa un TaxDocument al esquema SiiDte.

ORDEN FIJO (el validador del SII rechaza cualquier otro):
  DTE/Documento
    Encabezado/IdDoc      TipoDTE, Folio, FchEmis, IndServicio
    Encabezado/Emisor
    Encabezado/Receptor   (opcional)
    Encabezado/Totales    MntNeto, MntExe (> 0), IVA, MntTotal
    Detalle * N           en orden ascendente de NroLinDet
    Referencia            resolución SII (configuración, no del documento)

El documento declara ISO-8859-1. Todos los textos libres pasan por
sanitize_text, así que el contenido es ASCII puro.
"""
import re
from decimal import Decimal, ROUND_HALF_UP

from lxml import etree
from unidecode import unidecode

from boleta_sii.sii.documents import LineItem, TaxDocument
from boleta_sii.utils.sii_helpers import format_rut

SII_NS = "http://www.sii.cl/SiiDte"
XML_DECLARATION = '<?xml version="1.0" encoding="ISO-8859-1"?>'
XML_ENCODING = "ISO-8859-1"
MAX_TEXT_LENGTH = 300

IND_SERVICIO_BOLETA_VENTAS = 3

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^A-Za-z0-9 .,;:()/#%+_'\-]")
_DOCUMENT_ID = re.compile(r'ID="([^"]+)"')


def sanitize_text(value, max_length: int = MAX_TEXT_LENGTH) -> str:
    """
    Reduce free text to the character set the SII ingests.
    "Vacunación Óctuple  (perro)" -> "Vacunacion Octuple (perro)"
    Idempotent: sanitize_text(sanitize_text(x)) == sanitize_text(x)
    """
    if value is None:
        return ""
    text = unidecode(str(value))
    text = _WHITESPACE.sub(" ", text)
    text = _DISALLOWED.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip()
    return text[:max_length].rstrip()


def _num(value) -> str:
    """1.0 -> "1", 2.50 -> "2.5", 25000.0 -> "25000"."""
    d = Decimal(str(value)).normalize()
    return format(d, "f")


def _monto(value) -> int:
    """Money is written as whole pesos, rounded half-up."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _tag(name: str) -> str:
    return f"{{{SII_NS}}}{name}"


def _sub(parent, name: str, text=None):
    el = etree.SubElement(parent, _tag(name))
    if text is not None:
        el.text = str(text)
    return el


class BoletaXmlSerializer:
    """
    Usage:
        serializer = BoletaXmlSerializer("0", "2014-08-22")
        xml = serializer.serialize(tax_document)
    """

    def __init__(self, resolucion_numero: str, resolucion_fecha: str):
        self.resolucion_numero = resolucion_numero
        self.resolucion_fecha = resolucion_fecha

    def serialize(self, doc: TaxDocument) -> str:
        if doc.folio is None:
            # BoletaBuilder guarantees a folio; reaching this is a bug
            raise ValueError("TaxDocument sin folio: no se puede serializar")

        root = etree.Element(_tag("DTE"), nsmap={None: SII_NS})
        root.set("version", "1.0")
        documento = _sub(root, "Documento")
        documento.set("ID", f"DTE{doc.folio}")

        encabezado = _sub(documento, "Encabezado")
        self._id_doc(encabezado, doc)
        self._emisor(encabezado, doc)
        if doc.receptor is not None:
            self._receptor(encabezado, doc)
        self._totales(encabezado, doc)

        for detalle in sorted(doc.detalles, key=lambda d: d.numero_linea):
            self._detalle(documento, detalle)

        self._referencia(documento)

        body = etree.tostring(root, encoding="unicode")
        return f"{XML_DECLARATION}\n{body}"

    # ── Bloques ──

    @staticmethod
    def _id_doc(encabezado, doc: TaxDocument):
        id_doc = _sub(encabezado, "IdDoc")
        _sub(id_doc, "TipoDTE", doc.tipo_dte)
        _sub(id_doc, "Folio", doc.folio)
        _sub(id_doc, "FchEmis", doc.fecha_emision.strftime("%Y-%m-%d"))
        _sub(id_doc, "IndServicio", IND_SERVICIO_BOLETA_VENTAS)

    @staticmethod
    def _emisor(encabezado, doc: TaxDocument):
        e = doc.emisor
        emisor = _sub(encabezado, "Emisor")
        _sub(emisor, "RUTEmisor", format_rut(e.rut))
        _sub(emisor, "RznSocEmisor", sanitize_text(e.razon_social))
        _sub(emisor, "GiroEmisor", sanitize_text(e.giro))
        _sub(emisor, "Acteco", sanitize_text(e.actividad_economica))
        _sub(emisor, "DirOrigen", sanitize_text(e.direccion))
        _sub(emisor, "CmnaOrigen", sanitize_text(e.comuna))
        _sub(emisor, "CiudadOrigen", sanitize_text(e.ciudad))

    @staticmethod
    def _receptor(encabezado, doc: TaxDocument):
        r = doc.receptor
        receptor = _sub(encabezado, "Receptor")
        _sub(receptor, "RUTRecep", format_rut(r.rut))
        _sub(receptor, "RznSocRecep", sanitize_text(r.razon_social))
        for tag, value in (
            ("GiroRecep", r.giro),
            ("DirRecep", r.direccion),
            ("CmnaRecep", r.comuna),
            ("CiudadRecep", r.ciudad),
        ):
            if value:
                _sub(receptor, tag, sanitize_text(value))

    @staticmethod
    def _totales(encabezado, doc: TaxDocument):
        t = doc.totales
        totales = _sub(encabezado, "Totales")
        _sub(totales, "MntNeto", int(t.monto_neto))
        if t.monto_exento > 0:
            _sub(totales, "MntExe", int(t.monto_exento))
        _sub(totales, "IVA", int(t.iva))
        _sub(totales, "MntTotal", int(t.monto_total))

    @staticmethod
    def _detalle(documento, item: LineItem):
        detalle = _sub(documento, "Detalle")
        _sub(detalle, "NroLinDet", item.numero_linea)
        _sub(detalle, "NmbItem", sanitize_text(item.nombre))
        if item.descripcion:
            _sub(detalle, "DscItem", sanitize_text(item.descripcion))
        _sub(detalle, "QtyItem", _num(item.cantidad))
        if item.unidad_medida:
            _sub(detalle, "UnmdItem", sanitize_text(item.unidad_medida))
        _sub(detalle, "PrcItem", _monto(item.precio_unitario))
        if item.descuento_pct > 0:
            _sub(detalle, "DescuentoPct", _num(item.descuento_pct))
        _sub(detalle, "MontoItem", int(item.monto_item))
        if item.exento:
            _sub(detalle, "IndExe", 1)

    def _referencia(self, documento):
        ref = _sub(documento, "Referencia")
        _sub(ref, "NroLinRef", 1)
        _sub(ref, "TpoDocRef", "SET")
        _sub(ref, "FolioRef", self.resolucion_numero)
        _sub(ref, "FchRef", self.resolucion_fecha)
        _sub(ref, "RazonRef", "CASO-CERTIFICACION")


def extract_document_id(xml: str):
    """Return the Documento ID attribute ("DTE123"), or None."""
    match = _DOCUMENT_ID.search(xml or "")
    return match.group(1) if match else None
