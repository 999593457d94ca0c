"""
BOLETA-SII: Servicio de Emisión de Boletas
==========================================
Orquesta: validar → construir → serializar → firmar → guardar → enviar.
Los backends de firma y envío (demo o reales) se eligen una sola vez en
dependencies.py; este servicio no pregunta por el modo.
"""
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from boleta_sii.core.config import Settings, get_sii_url
from boleta_sii.core.exceptions import (
    ConfigurationError, NotFoundError, SubmissionError, ValidationError,
)
from boleta_sii.modules.sign_engine import Signer
from boleta_sii.modules.sii_responses import SubmissionStatus
from boleta_sii.modules.transmit_service import SubmissionBackend
from boleta_sii.services.boleta_repository import BoletaRepository
from boleta_sii.services.pdf_generator import BoletaPdfGenerator
from boleta_sii.sii.boleta_builder import BoletaBuilder
from boleta_sii.sii.documents import EstadoBoleta, TaxDocument, can_transition
from boleta_sii.sii.xml_generator import BoletaXmlSerializer

logger = logging.getLogger(__name__)

_ESTADO_ENVIO = {
    SubmissionStatus.ACCEPTED: EstadoBoleta.ENVIADO,
    SubmissionStatus.REJECTED: EstadoBoleta.RECHAZADO,
    SubmissionStatus.ERROR: EstadoBoleta.ERROR,
}

_ESTADO_CONSULTA = {
    SubmissionStatus.ACCEPTED: EstadoBoleta.ACEPTADO,
    SubmissionStatus.REJECTED: EstadoBoleta.RECHAZADO,
    SubmissionStatus.PROCESSING: EstadoBoleta.PROCESANDO,
    SubmissionStatus.ERROR: EstadoBoleta.ERROR,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _outcome_payload(outcome) -> dict:
    payload = asdict(outcome)
    payload["status"] = outcome.status.value
    return payload


class BoletaService:
    """Emisión y seguimiento de boletas electrónicas (DTE 39)."""

    def __init__(self, settings: Settings, repository: BoletaRepository,
                 signer: Signer, submission: SubmissionBackend):
        self.settings = settings
        self.repo = repository
        self.signer = signer
        self.submission = submission
        self.serializer = BoletaXmlSerializer(
            settings.sii_resolucion_numero, settings.sii_resolucion_fecha,
        )

    # ══════════════════════════════════════════════════════════
    # EMISIÓN
    # ══════════════════════════════════════════════════════════

    async def generar_boleta(self, centro_id: int, items: list[dict],
                             receptor: Optional[dict] = None,
                             factura_id: Optional[int] = None,
                             ambiente: Optional[str] = None) -> dict:
        # 1. Configuración (antes de cualquier otra cosa)
        errors = self.settings.validate_config()
        if errors:
            raise ConfigurationError(
                "Configuración del SII inválida: " + ", ".join(errors),
                errors=errors,
            )

        # 2. Ítems, antes de consumir un folio
        item_errors = BoletaBuilder.validate_items(items)
        if item_errors:
            raise ValidationError(item_errors)

        # 3. Centro emisor
        if not self.repo.get_centro(centro_id):
            raise NotFoundError(f"No existe centro con ID {centro_id}", code="CENTRO_NOT_FOUND")

        # 4. Folio + documento
        folio = self.repo.next_folio(centro_id)
        ambiente = ambiente or self.settings.sii_environment.value
        builder = BoletaBuilder(emisor=self.settings.get_emisor(), ambiente=ambiente)
        documento = builder.build(folio, items, receptor)

        # 5. XML + firma
        xml_generado = self.serializer.serialize(documento)
        signed = self.signer.sign(xml_generado)

        # 6. Guardar BORRADOR
        boleta = self.repo.create_boleta(
            self._boleta_record(documento, centro_id, factura_id, signed.xml, signed.signed_xml),
            self._item_rows(documento),
        )
        boleta_id = boleta["id"]

        # 7. Enviar al SII
        outcome = await self.submission.submit(signed.signed_xml, documento.emisor.rut)
        estado = _ESTADO_ENVIO[outcome.status]
        now = _now()
        self.repo.update_boleta(boleta_id, {
            "track_id": outcome.track_id,
            "estado": estado.value,
            "fecha_envio_sii": now,
            "fecha_respuesta_sii": now,
            "respuesta_sii": _outcome_payload(outcome),
            "codigo_rechazo": outcome.codigo_rechazo,
            "glosa_rechazo": outcome.glosa_rechazo,
        })

        if outcome.status != SubmissionStatus.ACCEPTED:
            logger.error(
                f"Boleta {boleta_id} folio={folio} {estado.value}: "
                f"{outcome.codigo_rechazo} {outcome.message}"
            )
            raise SubmissionError(
                outcome.message,
                estado=estado.value,
                codigo_rechazo=outcome.codigo_rechazo,
                glosa_rechazo=outcome.glosa_rechazo,
                track_id=outcome.track_id,
                boleta_id=boleta_id,
                raw=outcome.raw,
                code="SII_REJECTED" if estado == EstadoBoleta.RECHAZADO else "SII_ERROR",
            )

        logger.info(f"Boleta {boleta_id} folio={folio} enviada: track_id={outcome.track_id}")

        demo = self.signer.is_demo
        return {
            "success": True,
            "mensaje": (
                "Boleta generada en modo DEMO (no enviada al SII real)" if demo
                else "Boleta generada y enviada al SII exitosamente"
            ),
            "boleta_id": boleta_id,
            "folio": folio,
            "track_id": outcome.track_id,
            "estado": estado.value,
            "monto_neto": documento.totales.monto_neto,
            "monto_exento": documento.totales.monto_exento,
            "monto_iva": documento.totales.iva,
            "monto_total": documento.totales.monto_total,
            "fecha_emision": documento.fecha_emision.isoformat(),
            "ambiente": ambiente,
            "xml_generado": signed.xml if demo else None,
            "xml_firmado": signed.signed_xml if demo else None,
        }

    # ══════════════════════════════════════════════════════════
    # CONSULTA DE ESTADO
    # ══════════════════════════════════════════════════════════

    async def consultar_estado(self, track_id: str) -> dict:
        boleta = self.repo.get_by_track_id(track_id)
        if not boleta:
            raise NotFoundError(f"No existe boleta con Track ID: {track_id}", code="BOLETA_NOT_FOUND")

        outcome = await self.submission.query_status(track_id, boleta["rut_emisor"])

        if outcome.network_failure:
            raise SubmissionError(
                outcome.message,
                estado=boleta["estado"],
                track_id=track_id,
                boleta_id=boleta["id"],
                code="SII_UNREACHABLE",
            )

        actual = EstadoBoleta(boleta["estado"])
        nuevo = _ESTADO_CONSULTA[outcome.status]
        actualizado = False

        if nuevo != actual and can_transition(actual, nuevo):
            changes = {
                "estado": nuevo.value,
                "fecha_respuesta_sii": _now(),
                "respuesta_sii": _outcome_payload(outcome),
            }
            if nuevo == EstadoBoleta.RECHAZADO and outcome.errores:
                changes["codigo_rechazo"] = outcome.errores[0].get("codigo")
                changes["glosa_rechazo"] = outcome.errores[0].get("descripcion")
            self.repo.update_boleta(boleta["id"], changes)
            actualizado = True
            logger.info(f"Boleta {boleta['id']} track_id={track_id}: {actual.value} -> {nuevo.value}")
        elif nuevo != actual:
            logger.warning(
                f"Boleta {boleta['id']}: SII reporta {nuevo.value} pero el estado "
                f"{actual.value} no admite esa transición; no se actualiza"
            )

        return {
            "boleta_id": boleta["id"],
            "track_id": track_id,
            "estado": nuevo.value if actualizado else actual.value,
            "estado_anterior": actual.value,
            "actualizado": actualizado,
            "estado_sii": outcome.status.value,
            "mensaje": outcome.message,
            "errores": outcome.errores,
            "fecha_emision": boleta.get("fecha_emision"),
            "monto_total": boleta.get("monto_total"),
            "ambiente": boleta.get("ambiente"),
        }

    # ══════════════════════════════════════════════════════════
    # CONFIGURACIÓN / DIAGNÓSTICO
    # ══════════════════════════════════════════════════════════

    def get_config_summary(self) -> dict:
        errors = self.settings.validate_config()
        return {
            "mode": self.settings.mode.value,
            "environment": self.settings.sii_environment.value,
            "is_demo": self.settings.is_demo,
            "emisor": self.settings.get_emisor(),
            "upload_endpoint": get_sii_url("upload", self.settings),
            "query_endpoint": get_sii_url("query", self.settings),
            "resolucion_numero": self.settings.sii_resolucion_numero,
            "resolucion_fecha": self.settings.sii_resolucion_fecha,
            "configuracion_valida": not errors,
            "errores": errors,
        }

    async def test_connection(self) -> dict:
        return await self.submission.test_connection()

    def get_certificate_info(self) -> dict:
        return self.signer.get_certificate_info()

    # ══════════════════════════════════════════════════════════
    # PDF
    # ══════════════════════════════════════════════════════════

    def render_pdf(self, boleta_id: int) -> bytes:
        boleta = self.repo.get_by_id(boleta_id)
        if not boleta:
            raise NotFoundError(f"No existe boleta con ID {boleta_id}", code="BOLETA_NOT_FOUND")
        items = boleta.get("boleta_items") or []
        return BoletaPdfGenerator().generate(boleta, items, self.settings.get_emisor())

    # ── Helpers ──

    @staticmethod
    def _boleta_record(doc: TaxDocument, centro_id: int, factura_id: Optional[int],
                       xml_generado: str, xml_firmado: str) -> dict:
        return {
            "factura_id": factura_id,
            "centro_id": centro_id,
            "tipo_dte": doc.tipo_dte,
            "folio": doc.folio,
            "rut_emisor": doc.emisor.rut,
            "razon_social_emisor": doc.emisor.razon_social,
            "rut_receptor": doc.receptor.rut if doc.receptor else None,
            "razon_social_receptor": doc.receptor.razon_social if doc.receptor else None,
            "fecha_emision": doc.fecha_emision.isoformat(),
            "monto_neto": doc.totales.monto_neto,
            "monto_exento": doc.totales.monto_exento,
            "monto_iva": doc.totales.iva,
            "monto_total": doc.totales.monto_total,
            "xml_generado": xml_generado,
            "xml_firmado": xml_firmado,
            "estado": EstadoBoleta.BORRADOR.value,
            "ambiente": doc.ambiente,
        }

    @staticmethod
    def _item_rows(doc: TaxDocument) -> list[dict]:
        return [
            {
                "numero_linea": d.numero_linea,
                "nombre": d.nombre,
                "descripcion": d.descripcion,
                "cantidad": d.cantidad,
                "unidad_medida": d.unidad_medida or "UN",
                "precio_unitario": d.precio_unitario,
                "descuento_pct": d.descuento_pct,
                "monto_item": d.monto_item,
                "indicador_exento": d.exento,
            }
            for d in doc.detalles
        ]
