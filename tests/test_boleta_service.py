"""
BOLETA-SII — BoletaService tests
End-to-end pipeline against an in-memory repository and scripted
submission backends. No network, no database.
"""

import asyncio

import pytest

from boleta_sii.core.config import Settings
from boleta_sii.core.exceptions import (
    ConfigurationError, NotFoundError, SubmissionError, ValidationError,
)
from boleta_sii.modules.sign_engine import DEMO_MARKER, DemoSigningBackend, Signer, build_signer
from boleta_sii.modules.sii_responses import QueryOutcome, SubmissionStatus, UploadOutcome
from boleta_sii.modules.transmit_service import DemoSubmissionBackend, SubmissionBackend
from boleta_sii.services.boleta_service import BoletaService


class FakeRepository:
    """In-memory stand-in for the Supabase tables."""

    def __init__(self, centros=(1,)):
        self.centros = {cid: {"id": cid, "nombre": f"Centro {cid}"} for cid in centros}
        self.boletas: dict[int, dict] = {}
        self.items: dict[int, list[dict]] = {}
        self.updates: list[tuple[int, dict]] = []
        self.folios_emitidos = 0
        self._next_id = 100

    def get_centro(self, centro_id):
        return self.centros.get(centro_id)

    def next_folio(self, centro_id):
        self.folios_emitidos += 1
        return self.folios_emitidos

    def create_boleta(self, record, items):
        self._next_id += 1
        boleta = {**record, "id": self._next_id, "track_id": None}
        self.boletas[boleta["id"]] = boleta
        self.items[boleta["id"]] = [{**i, "boleta_id": boleta["id"]} for i in items]
        return dict(boleta)

    def update_boleta(self, boleta_id, changes):
        self.updates.append((boleta_id, dict(changes)))
        self.boletas[boleta_id].update(changes)

    def get_by_track_id(self, track_id):
        for boleta in self.boletas.values():
            if boleta.get("track_id") == track_id:
                return dict(boleta)
        return None

    def get_by_id(self, boleta_id):
        boleta = self.boletas.get(boleta_id)
        if boleta is None:
            return None
        return {**boleta, "boleta_items": self.items.get(boleta_id, [])}


class ScriptedSubmission(SubmissionBackend):
    """Returns pre-set outcomes and records every call."""

    def __init__(self, upload=None, query=None):
        self.upload = upload
        self.query = query
        self.submitted: list[str] = []
        self.queried: list[str] = []

    async def submit(self, signed_xml, rut_emisor):
        self.submitted.append(signed_xml)
        return self.upload

    async def query_status(self, track_id, rut_emisor):
        self.queried.append(track_id)
        return self.query

    async def test_connection(self):
        return {"success": True, "mensaje": "ok"}


ITEMS = [
    {"nombre": "Consulta", "cantidad": 1, "precio_unitario": 25000},
    {"nombre": "Vacuna", "cantidad": 2, "precio_unitario": 12000, "descuento_pct": 10},
]


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _service(repo=None, submission=None, cfg=None) -> BoletaService:
    cfg = cfg or _settings(mode="demo")
    return BoletaService(
        settings=cfg,
        repository=repo or FakeRepository(),
        signer=Signer(DemoSigningBackend()),
        submission=submission or DemoSubmissionBackend(),
    )


def _seed(repo: FakeRepository, estado: str, track_id: str = "1234") -> int:
    boleta = repo.create_boleta({
        "folio": 1, "rut_emisor": "76123456-0", "estado": estado,
        "fecha_emision": "2026-10-19", "monto_total": 25000, "ambiente": "certificacion",
    }, [])
    repo.boletas[boleta["id"]]["track_id"] = track_id
    return boleta["id"]


# ─────────────────────────────────────────────────────────────
# EMISSION
# ─────────────────────────────────────────────────────────────

class TestGenerarBoleta:
    def test_demo_flow(self):
        repo = FakeRepository()
        result = asyncio.run(_service(repo).generar_boleta(1, ITEMS))

        assert result["success"] is True
        assert result["folio"] == 1
        assert result["estado"] == "ENVIADO"
        assert result["track_id"].startswith("DEMO-")
        assert result["monto_total"] == 46600
        assert result["monto_neto"] + result["monto_iva"] == result["monto_total"]
        assert DEMO_MARKER in result["xml_firmado"]
        assert DEMO_MARKER not in result["xml_generado"]

        boleta = repo.boletas[result["boleta_id"]]
        assert boleta["estado"] == "ENVIADO"
        assert boleta["track_id"] == result["track_id"]
        assert boleta["respuesta_sii"]["status"] == "accepted"
        assert len(repo.items[result["boleta_id"]]) == 2

    def test_persisted_as_borrador_before_submission(self):
        repo = FakeRepository()
        seen = {}

        class Spy(ScriptedSubmission):
            async def submit(self, signed_xml, rut_emisor):
                seen["estado"] = next(iter(repo.boletas.values()))["estado"]
                return await super().submit(signed_xml, rut_emisor)

        submission = Spy(upload=UploadOutcome(SubmissionStatus.ACCEPTED, "ok", track_id="999"))
        asyncio.run(_service(repo, submission).generar_boleta(1, ITEMS))
        assert seen["estado"] == "BORRADOR"

    def test_live_mode_does_not_return_xml(self):
        cfg = _settings(mode="certificacion", sii_cert_path="/x.pfx", sii_cert_password="x")
        submission = ScriptedSubmission(
            upload=UploadOutcome(SubmissionStatus.ACCEPTED, "ok", track_id="555"),
        )
        # demo signer injected so no certificate is needed
        result = asyncio.run(BoletaService(
            cfg, FakeRepository(), Signer(DemoSigningBackend()), submission,
        ).generar_boleta(1, ITEMS))
        assert result["track_id"] == "555"
        assert result["ambiente"] == "certificacion"

    def test_rejected_upload_is_stored_then_raised(self):
        repo = FakeRepository()
        submission = ScriptedSubmission(upload=UploadOutcome(
            SubmissionStatus.REJECTED, "SII rechazó el envío",
            codigo_rechazo="DTE-3-101", glosa_rechazo="Folio ya utilizado",
        ))
        with pytest.raises(SubmissionError) as exc:
            asyncio.run(_service(repo, submission).generar_boleta(1, ITEMS))

        assert exc.value.code == "SII_REJECTED"
        assert exc.value.codigo_rechazo == "DTE-3-101"
        boleta = repo.boletas[exc.value.boleta_id]
        assert boleta["estado"] == "RECHAZADO"
        assert boleta["codigo_rechazo"] == "DTE-3-101"
        assert boleta["glosa_rechazo"] == "Folio ya utilizado"

    def test_upload_timeout_marks_error(self):
        repo = FakeRepository()
        submission = ScriptedSubmission(upload=UploadOutcome(
            SubmissionStatus.ERROR, "Timeout", codigo_rechazo="ERR_TIMEOUT",
        ))
        with pytest.raises(SubmissionError) as exc:
            asyncio.run(_service(repo, submission).generar_boleta(1, ITEMS))
        assert exc.value.code == "SII_ERROR"
        assert repo.boletas[exc.value.boleta_id]["estado"] == "ERROR"

    def test_missing_certificate_fails_before_anything(self):
        repo = FakeRepository()
        submission = ScriptedSubmission()
        cfg = _settings(mode="certificacion", sii_cert_path="", sii_cert_password="")
        service = BoletaService(cfg, repo, build_signer(cfg), submission)

        with pytest.raises(ConfigurationError) as exc:
            asyncio.run(service.generar_boleta(1, ITEMS))

        assert any("SII_CERT_PATH" in e for e in exc.value.errors)
        assert repo.folios_emitidos == 0
        assert repo.boletas == {}
        assert submission.submitted == []

    def test_invalid_items_do_not_consume_folio(self):
        repo = FakeRepository()
        with pytest.raises(ValidationError):
            asyncio.run(_service(repo).generar_boleta(1, [{"nombre": "X", "cantidad": 0, "precio_unitario": 1}]))
        assert repo.folios_emitidos == 0

    def test_61_items_rejected(self):
        repo = FakeRepository()
        with pytest.raises(ValidationError):
            asyncio.run(_service(repo).generar_boleta(1, [ITEMS[0]] * 61))
        assert repo.boletas == {}

    def test_unknown_centro(self):
        repo = FakeRepository(centros=())
        with pytest.raises(NotFoundError) as exc:
            asyncio.run(_service(repo).generar_boleta(7, ITEMS))
        assert exc.value.code == "CENTRO_NOT_FOUND"
        assert repo.folios_emitidos == 0

    def test_folios_increase(self):
        repo = FakeRepository()
        service = _service(repo)
        first = asyncio.run(service.generar_boleta(1, ITEMS))
        second = asyncio.run(service.generar_boleta(1, ITEMS))
        assert second["folio"] == first["folio"] + 1
        assert first["track_id"] != second["track_id"]


# ─────────────────────────────────────────────────────────────
# STATUS
# ─────────────────────────────────────────────────────────────

class TestConsultarEstado:
    def test_unknown_track_id(self):
        repo = FakeRepository()
        submission = ScriptedSubmission()
        with pytest.raises(NotFoundError) as exc:
            asyncio.run(_service(repo, submission).consultar_estado("nope"))
        assert exc.value.code == "BOLETA_NOT_FOUND"
        assert submission.queried == []
        assert repo.updates == []

    def test_accepted_updates_estado(self):
        repo = FakeRepository()
        boleta_id = _seed(repo, "ENVIADO")
        submission = ScriptedSubmission(query=QueryOutcome(SubmissionStatus.ACCEPTED, "ok", track_id="1234"))

        result = asyncio.run(_service(repo, submission).consultar_estado("1234"))

        assert result["estado"] == "ACEPTADO"
        assert result["estado_anterior"] == "ENVIADO"
        assert result["actualizado"] is True
        assert repo.boletas[boleta_id]["estado"] == "ACEPTADO"

    def test_rejection_stores_sii_code(self):
        repo = FakeRepository()
        boleta_id = _seed(repo, "PROCESANDO")
        submission = ScriptedSubmission(query=QueryOutcome(
            SubmissionStatus.REJECTED, "rechazado", track_id="1234",
            errores=[{"codigo": "FRM-3", "descripcion": "Firma invalida"}],
        ))
        asyncio.run(_service(repo, submission).consultar_estado("1234"))
        boleta = repo.boletas[boleta_id]
        assert boleta["estado"] == "RECHAZADO"
        assert boleta["codigo_rechazo"] == "FRM-3"
        assert boleta["glosa_rechazo"] == "Firma invalida"

    def test_same_state_is_not_rewritten(self):
        repo = FakeRepository()
        _seed(repo, "PROCESANDO")
        submission = ScriptedSubmission(query=QueryOutcome(SubmissionStatus.PROCESSING, "en proceso"))
        result = asyncio.run(_service(repo, submission).consultar_estado("1234"))
        assert result["actualizado"] is False
        assert repo.updates == []

    def test_terminal_state_never_moves(self):
        repo = FakeRepository()
        boleta_id = _seed(repo, "ACEPTADO")
        submission = ScriptedSubmission(query=QueryOutcome(SubmissionStatus.PROCESSING, "en proceso"))
        result = asyncio.run(_service(repo, submission).consultar_estado("1234"))
        assert result["estado"] == "ACEPTADO"
        assert result["actualizado"] is False
        assert repo.boletas[boleta_id]["estado"] == "ACEPTADO"

    def test_network_failure_is_not_persisted(self):
        repo = FakeRepository()
        boleta_id = _seed(repo, "ENVIADO")
        submission = ScriptedSubmission(query=QueryOutcome(
            SubmissionStatus.ERROR, "timeout", network_failure=True,
        ))
        with pytest.raises(SubmissionError) as exc:
            asyncio.run(_service(repo, submission).consultar_estado("1234"))
        assert exc.value.code == "SII_UNREACHABLE"
        assert repo.updates == []
        assert repo.boletas[boleta_id]["estado"] == "ENVIADO"


# ─────────────────────────────────────────────────────────────
# CONFIG / DIAGNOSTICS / PDF
# ─────────────────────────────────────────────────────────────

class TestDiagnostico:
    def test_config_summary_demo(self):
        summary = _service().get_config_summary()
        assert summary["mode"] == "demo"
        assert summary["is_demo"] is True
        assert summary["configuracion_valida"] is True
        assert summary["upload_endpoint"].startswith("https://maullin.sii.cl")
        assert summary["emisor"]["rut"] == "76123456-0"

    def test_config_summary_lists_problems(self):
        cfg = _settings(mode="produccion", sii_environment="produccion")
        summary = _service(cfg=cfg).get_config_summary()
        assert summary["configuracion_valida"] is False
        assert len(summary["errores"]) == 2
        assert summary["upload_endpoint"].startswith("https://palena.sii.cl")

    def test_connection_delegates_to_backend(self):
        assert asyncio.run(_service().test_connection())["success"] is True

    def test_certificate_info_demo(self):
        assert _service().get_certificate_info()["is_demo"] is True


class TestPdf:
    def test_render_pdf(self):
        repo = FakeRepository()
        service = _service(repo)
        result = asyncio.run(service.generar_boleta(
            1, ITEMS, receptor={"rut": "12345678-5", "razon_social": "Juan Pérez"},
        ))
        pdf = service.render_pdf(result["boleta_id"])
        assert pdf.startswith(b"%PDF")

    def test_render_pdf_unknown(self):
        with pytest.raises(NotFoundError):
            _service().render_pdf(404)
