"""
BOLETA-SII: Constructor de Boletas Electrónicas (DTE 39)
========================================================
Transforma una solicitud (emisor, receptor opcional, ítems) en un
TaxDocument con los totales que el SII reconcilia.

REGLAS DE CÁLCULO:
- MontoItem = round(precio * cantidad * (1 - descuento/100)), redondeo
  ROUND_HALF_UP por línea, ANTES de sumar.
- Los precios de boleta incluyen IVA:
    neto = round(total_afecto / 1.19)
    iva  = total_afecto - neto
- Líneas exentas (IndExe=1) no entran al split neto/IVA; van a MntExe.
- MntTotal = total_afecto + total_exento
- Máximo 60 líneas de detalle por boleta (límite SII).
"""
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from boleta_sii.core.exceptions import ValidationError
from boleta_sii.sii.documents import (
    Emisor, LineItem, Receptor, TaxDocument, Totales,
)
from boleta_sii.sii.xml_generator import sanitize_text
from boleta_sii.utils.sii_helpers import current_cl_date

MAX_ITEMS = 60
FACTOR_IVA = Decimal("1.19")
_UNO = Decimal("1")


def _round(value: Decimal) -> int:
    return int(value.quantize(_UNO, rounding=ROUND_HALF_UP))


def _to_decimal(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return d if d.is_finite() else None


def monto_linea(precio_unitario, cantidad, descuento_pct=0) -> int:
    """Rounded line amount after discount."""
    precio = Decimal(str(precio_unitario))
    qty = Decimal(str(cantidad))
    desc = Decimal(str(descuento_pct or 0))
    return _round(precio * qty * (Decimal(100) - desc) / Decimal(100))


def compute_totals(lineas: Iterable[tuple[int, bool]]) -> Totales:
    """
    Totals from (monto_item, exento) pairs.
    Pure: the same lines always give the same Totales.
    """
    afecto = 0
    exento = 0
    for monto, es_exento in lineas:
        if es_exento:
            exento += monto
        else:
            afecto += monto
    neto = _round(Decimal(afecto) / FACTOR_IVA)
    return Totales(
        monto_neto=neto,
        monto_exento=exento,
        iva=afecto - neto,
        monto_total=afecto + exento,
    )


class BoletaBuilder:
    def __init__(self, emisor: Emisor | dict, ambiente: str = "certificacion"):
        self.emisor = emisor if isinstance(emisor, Emisor) else Emisor(**emisor)
        self.ambiente = ambiente

    def build(self, folio: Optional[int], items: list[dict],
              receptor: Optional[dict] = None, *,
              fecha_emision: Optional[date] = None) -> TaxDocument:
        """
        Build an immutable TaxDocument.

        Raises:
            ValidationError: listing every violated field. Nothing is built
                unless all items are valid.
        """
        errors = self.validate(folio, items)
        if errors:
            raise ValidationError(errors)

        detalles = []
        for i, item in enumerate(items, 1):
            descuento = item.get("descuento_pct") or 0
            detalles.append(LineItem(
                numero_linea=i,
                nombre=str(item["nombre"]).strip(),
                descripcion=item.get("descripcion") or None,
                cantidad=float(item["cantidad"]),
                unidad_medida=item.get("unidad_medida") or "UN",
                precio_unitario=float(item["precio_unitario"]),
                descuento_pct=float(descuento),
                monto_item=monto_linea(item["precio_unitario"], item["cantidad"], descuento),
                exento=bool(item.get("exento", False)),
            ))

        totales = compute_totals((d.monto_item, d.exento) for d in detalles)

        return TaxDocument(
            folio=int(Decimal(str(folio))),
            fecha_emision=fecha_emision or date.fromisoformat(current_cl_date()),
            emisor=self.emisor,
            receptor=self._receptor(receptor),
            detalles=tuple(detalles),
            totales=totales,
            ambiente=self.ambiente,
        )

    @classmethod
    def validate(cls, folio, items) -> list[str]:
        errors: list[str] = []
        f = _to_decimal(folio)
        if f is None or f <= 0 or f != f.to_integral_value():
            errors.append("folio: es requerido y debe ser un entero positivo")
        return errors + cls.validate_items(items)

    @staticmethod
    def validate_items(items) -> list[str]:
        errors: list[str] = []
        if not items:
            errors.append("items: se requiere al menos 1 ítem")
            return errors
        if len(items) > MAX_ITEMS:
            errors.append(f"items: máximo {MAX_ITEMS} ítems por boleta (recibidos {len(items)})")

        for i, item in enumerate(items, 1):
            if not sanitize_text(item.get("nombre")):
                errors.append(f"items[{i}].nombre: es requerido")

            cantidad = _to_decimal(item.get("cantidad"))
            if cantidad is None or cantidad <= 0:
                errors.append(f"items[{i}].cantidad: debe ser mayor a 0")

            precio = _to_decimal(item.get("precio_unitario"))
            if precio is None or precio <= 0:
                errors.append(f"items[{i}].precio_unitario: debe ser mayor a 0")

            descuento = item.get("descuento_pct")
            if descuento is not None:
                d = _to_decimal(descuento)
                if d is None or d < 0 or d > 100:
                    errors.append(f"items[{i}].descuento_pct: debe estar entre 0 y 100")
        return errors

    @staticmethod
    def _receptor(receptor: Optional[dict]) -> Optional[Receptor]:
        if receptor is None:
            return None
        data = {k: v for k, v in receptor.items() if v}
        return Receptor(**data)
