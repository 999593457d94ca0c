"""
BOLETA-SII: Generador de PDF para Boletas
=========================================
Representación impresa de una boleta electrónica guardada:
encabezado con el recuadro SII, emisor, receptor, detalle y totales.
"""
from fpdf import FPDF

from boleta_sii.utils.sii_helpers import format_clp, format_rut

TITULO_DTE = "BOLETA ELECTRONICA"


class BoletaPdfGenerator:
    """Genera PDF de una boleta (registro de boletas_electronicas + ítems)."""

    def __init__(self, primary_color: tuple | None = None):
        self.primary_color = primary_color or (26, 60, 94)

    def generate(self, boleta: dict, items: list[dict], emisor: dict) -> bytes:
        pdf = FPDF(orientation="P", unit="mm", format="Letter")
        pdf.set_auto_page_break(auto=True, margin=20)
        pdf.add_page()

        self._header(pdf, boleta, emisor)
        self._receptor_section(pdf, boleta)
        self._items_table(pdf, items)
        self._totales_section(pdf, boleta)
        self._sii_section(pdf, boleta)
        self._footer(pdf, boleta)

        return bytes(pdf.output())

    def _header(self, pdf: FPDF, boleta: dict, emisor: dict):
        r, g, b = self.primary_color

        # Emisor, a la izquierda
        pdf.set_xy(10, 12)
        pdf.set_font("Helvetica", "B", 12)
        pdf.set_text_color(r, g, b)
        pdf.cell(120, 6, _safe(emisor.get("razon_social")), new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "", 8)
        pdf.set_text_color(60, 60, 60)
        for line in (
            f"Giro: {_safe(emisor.get('giro'))}",
            f"{_safe(emisor.get('direccion'))}, {_safe(emisor.get('comuna'))}",
            _safe(emisor.get("ciudad")),
        ):
            pdf.cell(120, 4, line, new_x="LMARGIN", new_y="NEXT")

        # Recuadro SII, a la derecha
        pdf.set_draw_color(200, 30, 30)
        pdf.set_line_width(0.8)
        pdf.rect(136, 10, 70, 28)
        pdf.set_text_color(200, 30, 30)
        pdf.set_font("Helvetica", "B", 10)
        pdf.set_xy(136, 12)
        pdf.cell(70, 7, f"R.U.T.: {format_rut(boleta.get('rut_emisor') or emisor.get('rut', ''))}", align="C")
        pdf.set_xy(136, 19)
        pdf.cell(70, 7, TITULO_DTE, align="C")
        pdf.set_xy(136, 26)
        pdf.cell(70, 7, f"N° {_safe(boleta.get('folio'))}", align="C")
        pdf.set_line_width(0.2)
        pdf.set_draw_color(0, 0, 0)
        pdf.set_text_color(40, 40, 40)

        pdf.set_y(42)
        self._field_row(pdf, [
            ("Fecha Emisión:", boleta.get("fecha_emision")),
            ("Ambiente:", boleta.get("ambiente")),
        ])
        pdf.ln(2)

    def _section_title(self, pdf: FPDF, title: str):
        pdf.set_fill_color(230, 240, 250)
        pdf.set_font("Helvetica", "B", 9)
        r, g, b = self.primary_color
        pdf.set_text_color(r, g, b)
        pdf.cell(196, 6, f"  {title}", fill=True, new_x="LMARGIN", new_y="NEXT")
        pdf.set_text_color(40, 40, 40)

    def _field_row(self, pdf: FPDF, pairs: list[tuple[str, str]]):
        pdf.set_font("Helvetica", "", 8)
        col_w = 196 / len(pairs) if pairs else 196
        y = pdf.get_y()
        for i, (label, value) in enumerate(pairs):
            pdf.set_xy(10 + i * col_w, y)
            pdf.set_font("Helvetica", "B", 8)
            pdf.cell(28, 5, label)
            pdf.set_font("Helvetica", "", 8)
            pdf.cell(col_w - 28, 5, _safe(value))
        pdf.ln(5)

    def _receptor_section(self, pdf: FPDF, boleta: dict):
        if not boleta.get("rut_receptor"):
            return
        self._section_title(pdf, "RECEPTOR")
        self._field_row(pdf, [
            ("RUT:", format_rut(boleta["rut_receptor"])),
            ("Nombre:", boleta.get("razon_social_receptor")),
        ])
        pdf.ln(2)

    def _items_table(self, pdf: FPDF, items: list[dict]):
        self._section_title(pdf, "DETALLE")
        cols = [("#", 10), ("Descripción", 86), ("Cant.", 20),
                ("Precio", 30), ("Desc. %", 20), ("Monto", 30)]
        pdf.set_font("Helvetica", "B", 8)
        pdf.set_fill_color(240, 240, 240)
        for title, w in cols:
            pdf.cell(w, 6, title, border=1, fill=True, align="C")
        pdf.ln()

        pdf.set_font("Helvetica", "", 8)
        for item in sorted(items, key=lambda i: i.get("numero_linea", 0)):
            nombre = _safe(item.get("nombre"))
            if item.get("indicador_exento"):
                nombre = f"{nombre} (EXENTO)"
            pdf.cell(10, 5, str(item.get("numero_linea", "")), border=1, align="C")
            pdf.cell(86, 5, nombre[:55], border=1)
            pdf.cell(20, 5, _fmtn(item.get("cantidad")), border=1, align="R")
            pdf.cell(30, 5, format_clp(item.get("precio_unitario")), border=1, align="R")
            pdf.cell(20, 5, _fmtn(item.get("descuento_pct") or 0), border=1, align="R")
            pdf.cell(30, 5, format_clp(item.get("monto_item")), border=1, align="R")
            pdf.ln()
        pdf.ln(3)

    def _totales_section(self, pdf: FPDF, boleta: dict):
        rows = [("Monto Neto", boleta.get("monto_neto"))]
        if boleta.get("monto_exento"):
            rows.append(("Monto Exento", boleta.get("monto_exento")))
        rows += [
            ("IVA (19%)", boleta.get("monto_iva")),
            ("TOTAL", boleta.get("monto_total")),
        ]
        for label, value in rows:
            bold = label == "TOTAL"
            pdf.set_x(136)
            pdf.set_font("Helvetica", "B" if bold else "", 9 if bold else 8)
            pdf.cell(40, 6 if bold else 5, label, border=1)
            pdf.cell(30, 6 if bold else 5, format_clp(value), border=1, align="R")
            pdf.ln()
        pdf.ln(4)

    def _sii_section(self, pdf: FPDF, boleta: dict):
        self._section_title(pdf, "ESTADO SII")
        self._field_row(pdf, [
            ("Track ID:", boleta.get("track_id")),
            ("Estado:", boleta.get("estado")),
        ])
        if boleta.get("glosa_rechazo"):
            self._field_row(pdf, [("Rechazo:", boleta["glosa_rechazo"][:120])])

    def _footer(self, pdf: FPDF, boleta: dict):
        pdf.ln(6)
        pdf.set_font("Helvetica", "I", 7)
        pdf.set_text_color(120, 120, 120)
        track_id = str(boleta.get("track_id") or "")
        if track_id.startswith("DEMO-"):
            pdf.set_text_color(200, 30, 30)
            pdf.set_font("Helvetica", "B", 9)
            pdf.cell(196, 5, "DOCUMENTO DEMO - SIN VALIDEZ TRIBUTARIA",
                     align="C", new_x="LMARGIN", new_y="NEXT")
            pdf.set_font("Helvetica", "I", 7)
            pdf.set_text_color(120, 120, 120)
        pdf.cell(196, 4, "Timbre Electrónico SII - Verifique documento en www.sii.cl", align="C")


def _safe(v) -> str:
    if v is None:
        return "-"
    return str(v).encode("latin-1", errors="replace").decode("latin-1")


def _fmtn(v) -> str:
    try:
        n = float(v)
        return str(int(n)) if n == int(n) else f"{n:.2f}"
    except (ValueError, TypeError):
        return "-"
