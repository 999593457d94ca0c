"""
BOLETA-SII — Module 3: TransmitService
Delivers signed boletas to the SII and polls their status.

SII Upload Endpoint:
- URL: POST {maullin|palena}.sii.cl/cgi_dte/UPL/DTEUpload
- Body: multipart/form-data
    rutEmpresa, dvEmpresa   emisor RUT body / check digit
    rutEnvia,   dvEnvia     sender RUT (same as emisor here)
    archivo                 dte.xml, text/xml, ISO-8859-1 bytes
- Response: text ("<STATUS>0</STATUS><TRACKID>123</TRACKID>") or JSON

SII Status Endpoint:
- URL: GET .../cgi_dte/UPL/DTEQueryStatus?rutEmpresa=&dvEmpresa=&trackId=

No retries here: a failed call is reported once and the caller decides.
A timed-out upload may still have reached the SII; status polling is the
way to reconcile it.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from boleta_sii.core.config import Settings, get_sii_url
from boleta_sii.core.exceptions import NotFoundError
from boleta_sii.modules.sii_responses import (
    QueryOutcome, SubmissionStatus, UploadOutcome,
    parse_query_reply, parse_upload_reply,
)
from boleta_sii.sii.xml_generator import XML_ENCODING
from boleta_sii.utils.sii_helpers import generate_demo_track_id, split_rut

logger = logging.getLogger(__name__)


class SubmissionBackend:
    is_demo = False

    async def submit(self, signed_xml: str, rut_emisor: str) -> UploadOutcome:
        raise NotImplementedError

    async def query_status(self, track_id: str, rut_emisor: str) -> QueryOutcome:
        raise NotImplementedError

    async def test_connection(self) -> dict:
        raise NotImplementedError


class DemoSubmissionBackend(SubmissionBackend):
    """Never touches the network. Every boleta is accepted."""

    is_demo = True

    async def submit(self, signed_xml: str, rut_emisor: str) -> UploadOutcome:
        track_id = generate_demo_track_id()
        logger.info(f"Demo submission: emisor={rut_emisor}, track_id={track_id}")
        return UploadOutcome(
            status=SubmissionStatus.ACCEPTED,
            track_id=track_id,
            message="Documento aceptado en modo DEMO (sin envío real al SII)",
        )

    async def query_status(self, track_id: str, rut_emisor: str) -> QueryOutcome:
        now = datetime.now(timezone.utc).isoformat()
        return QueryOutcome(
            status=SubmissionStatus.ACCEPTED,
            message="Documento aceptado en modo DEMO",
            track_id=track_id,
            fecha_recepcion=now,
            fecha_procesamiento=now,
        )

    async def test_connection(self) -> dict:
        return {"success": True, "mensaje": "Modo DEMO: Conexión simulada exitosamente"}


class LiveSubmissionBackend(SubmissionBackend):
    """
    Usage:
        backend = LiveSubmissionBackend(upload_url, query_url, api_url)
        outcome = await backend.submit(signed_xml, "76123456-0")
    """

    TIMEOUT_SECONDS = 30
    CONNECTION_TEST_TIMEOUT_SECONDS = 10

    def __init__(self, upload_url: str, query_url: str, api_url: str,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.upload_url = upload_url
        self.query_url = query_url
        self.api_url = api_url
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def submit(self, signed_xml: str, rut_emisor: str) -> UploadOutcome:
        body, dv = split_rut(rut_emisor)
        data = {
            "rutEmpresa": body,
            "dvEmpresa": dv,
            "rutEnvia": body,
            "dvEnvia": dv,
        }
        files = {
            "archivo": (
                "dte.xml",
                signed_xml.encode(XML_ENCODING, errors="xmlcharrefreplace"),
                "text/xml",
            ),
        }

        logger.info(f"Uploading DTE to SII: url={self.upload_url}, emisor={body}-{dv}")

        try:
            async with self._client(self.TIMEOUT_SECONDS) as client:
                response = await client.post(self.upload_url, data=data, files=files)

        except httpx.TimeoutException as e:
            logger.warning(f"SII upload timeout after {self.TIMEOUT_SECONDS}s: {e}")
            return UploadOutcome(
                status=SubmissionStatus.ERROR,
                message=f"Timeout en envío al SII ({self.TIMEOUT_SECONDS}s): {e}",
                codigo_rechazo="ERR_TIMEOUT",
            )

        except httpx.HTTPError as e:
            logger.warning(f"SII upload connection error: {e}")
            return UploadOutcome(
                status=SubmissionStatus.ERROR,
                message=f"No se pudo conectar con el SII: {e}",
                codigo_rechazo="ERR_CONNECTION",
            )

        if response.status_code >= 500:
            logger.error(f"SII upload HTTP {response.status_code}: {response.text[:300]}")
            return UploadOutcome(
                status=SubmissionStatus.ERROR,
                message=f"Error del SII (HTTP {response.status_code})",
                codigo_rechazo=f"HTTP_{response.status_code}",
                glosa_rechazo=response.text[:500] or None,
                raw=response.text,
            )

        outcome = parse_upload_reply(response.text)
        if outcome.status == SubmissionStatus.ACCEPTED:
            logger.info(f"DTE received by SII: track_id={outcome.track_id}")
        else:
            logger.warning(
                f"SII upload {outcome.status.value}: codigo={outcome.codigo_rechazo}, "
                f"msg={outcome.message}"
            )
        return outcome

    async def query_status(self, track_id: str, rut_emisor: str) -> QueryOutcome:
        body, dv = split_rut(rut_emisor)
        params = {"rutEmpresa": body, "dvEmpresa": dv, "trackId": track_id}

        logger.info(f"Querying SII status: track_id={track_id}")

        try:
            async with self._client(self.TIMEOUT_SECONDS) as client:
                response = await client.get(self.query_url, params=params)

        except httpx.TimeoutException as e:
            return self._network_failure(track_id, "ERR_TIMEOUT", f"Timeout al consultar el SII: {e}")

        except httpx.HTTPError as e:
            return self._network_failure(track_id, "ERR_CONNECTION", f"No se pudo conectar con el SII: {e}")

        if response.status_code == 404:
            raise NotFoundError(
                f"El SII no reconoce el track id {track_id}",
                code="SII_TRACK_NOT_FOUND",
            )

        if response.status_code >= 500:
            return self._network_failure(
                track_id, f"HTTP_{response.status_code}",
                f"Error del SII (HTTP {response.status_code})",
            )

        return parse_query_reply(response.text, track_id)

    async def test_connection(self) -> dict:
        try:
            async with self._client(self.CONNECTION_TEST_TIMEOUT_SECONDS) as client:
                response = await client.get(self.api_url)
        except httpx.HTTPError as e:
            logger.warning(f"SII connection test failed: {e}")
            return {"success": False, "mensaje": f"Error de conexión con el SII: {e}"}

        if response.status_code in (200, 404):
            return {"success": True, "mensaje": f"Conexión con el SII exitosa ({self.api_url})"}
        return {
            "success": False,
            "mensaje": f"El SII respondió HTTP {response.status_code}",
        }

    @staticmethod
    def _network_failure(track_id: str, codigo: str, message: str) -> QueryOutcome:
        logger.warning(f"SII status query failed for {track_id}: {message}")
        return QueryOutcome(
            status=SubmissionStatus.ERROR,
            message=message,
            track_id=track_id,
            errores=[{"codigo": codigo, "descripcion": message}],
            network_failure=True,
        )


def build_submission_backend(cfg: Settings) -> SubmissionBackend:
    """Pick the submission backend once, from the configured mode."""
    if cfg.is_demo:
        logger.info("Submission: demo mode, nothing is sent to the SII")
        return DemoSubmissionBackend()
    backend = LiveSubmissionBackend(
        upload_url=get_sii_url("upload", cfg),
        query_url=get_sii_url("query", cfg),
        api_url=get_sii_url("api", cfg),
    )
    logger.info(f"Submission: live, upload={backend.upload_url}")
    return backend
