"""
BOLETA-SII: Router de Boletas Electrónicas
==========================================
Endpoints REST para emisión, consulta de estado, configuración,
diagnóstico de conexión/certificado y PDF.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import Response

from boleta_sii.schemas.models import (
    BoletaRequest, BoletaResponse, CertificateInfo, ConfigResponse,
    ConnectionResponse, StatusResponse,
)


def create_boleta_router(get_boleta_service) -> APIRouter:
    """
    Crea router de boletas con inyección de dependencias.

    Args:
        get_boleta_service: Dependency que retorna BoletaService
    """
    router = APIRouter(prefix="/api/boleta", tags=["Boleta Electrónica"])

    # ── EMISIÓN ──

    @router.post("/demo", response_model=BoletaResponse, status_code=201)
    async def generar_boleta(data: BoletaRequest, service=Depends(get_boleta_service)):
        """Generar, firmar y enviar una boleta electrónica (DTE 39)."""
        return await service.generar_boleta(
            centro_id=data.centro_id,
            items=[item.model_dump() for item in data.items],
            receptor=data.receptor.model_dump() if data.receptor else None,
            factura_id=data.factura_id,
            ambiente=data.ambiente.value if data.ambiente else None,
        )

    # ── CONSULTA ──

    @router.get("/status/{track_id}", response_model=StatusResponse)
    async def consultar_estado(track_id: str, service=Depends(get_boleta_service)):
        """Consultar en el SII el estado de una boleta enviada."""
        return await service.consultar_estado(track_id)

    # ── CONFIGURACIÓN / DIAGNÓSTICO ──

    @router.get("/config", response_model=ConfigResponse)
    async def get_config(service=Depends(get_boleta_service)):
        return service.get_config_summary()

    @router.get("/test-connection", response_model=ConnectionResponse)
    async def test_connection(service=Depends(get_boleta_service)):
        return await service.test_connection()

    @router.get("/certificate-info", response_model=CertificateInfo)
    async def certificate_info(service=Depends(get_boleta_service)):
        return service.get_certificate_info()

    # ── PDF ──

    @router.get("/{boleta_id}/pdf")
    async def boleta_pdf(boleta_id: int, service=Depends(get_boleta_service)):
        pdf_bytes = service.render_pdf(boleta_id)
        return Response(
            content=pdf_bytes,
            media_type="application/pdf",
            headers={"Content-Disposition": f'inline; filename="boleta_{boleta_id}.pdf"'},
        )

    return router
