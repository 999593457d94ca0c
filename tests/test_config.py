"""
BOLETA-SII — Configuration and helper tests
"""

import re

import pytest

from boleta_sii.core.config import SIIMode, Settings, get_sii_url
from boleta_sii.sii.documents import EstadoBoleta, can_transition, is_terminal
from boleta_sii.utils.sii_helpers import (
    compute_dv, current_cl_date, format_clp, format_rut,
    generate_demo_track_id, split_rut, validate_rut,
)


class TestSettings:
    def test_defaults_to_demo(self):
        cfg = Settings(_env_file=None)
        assert cfg.mode == SIIMode.DEMO
        assert cfg.is_demo
        assert cfg.validate_config() == []

    def test_certificate_required_outside_demo(self):
        cfg = Settings(_env_file=None, mode="certificacion")
        errors = cfg.validate_config()
        assert len(errors) == 2
        assert any("SII_CERT_PATH" in e for e in errors)
        assert any("SII_CERT_PASSWORD" in e for e in errors)

    def test_emisor_required(self):
        cfg = Settings(_env_file=None, sii_rut_empresa=" ", sii_razon_social="")
        assert len(cfg.validate_config()) == 2

    def test_emisor_dict(self):
        emisor = Settings(_env_file=None, sii_giro="COMERCIO").get_emisor()
        assert emisor["giro"] == "COMERCIO"
        assert set(emisor) == {
            "rut", "razon_social", "giro", "actividad_economica",
            "direccion", "comuna", "ciudad",
        }

    def test_invalid_mode_rejected(self):
        with pytest.raises(Exception):
            Settings(_env_file=None, mode="staging")


class TestSiiUrls:
    def test_certificacion(self):
        cfg = Settings(_env_file=None, sii_environment="certificacion")
        assert get_sii_url("upload", cfg) == "https://maullin.sii.cl/cgi_dte/UPL/DTEUpload"
        assert get_sii_url("query", cfg) == "https://maullin.sii.cl/cgi_dte/UPL/DTEQueryStatus"
        assert get_sii_url("api", cfg) == "https://maullin.sii.cl"

    def test_produccion(self):
        cfg = Settings(_env_file=None, sii_environment="produccion")
        assert get_sii_url("upload", cfg) == "https://palena.sii.cl/cgi_dte/UPL/DTEUpload"

    def test_override_wins(self):
        cfg = Settings(_env_file=None, sii_query_endpoint="http://stub/query")
        assert get_sii_url("query", cfg) == "http://stub/query"
        assert get_sii_url("upload", cfg).startswith("https://maullin.sii.cl")

    def test_unknown_service(self):
        with pytest.raises(ValueError):
            get_sii_url("token", Settings(_env_file=None))


class TestRut:
    @pytest.mark.parametrize("raw, expected", [
        ("12.345.678-5", "12345678-5"),
        ("12345678-k", "12345678-K"),
        ("123456785", "12345678-5"),
        ("76 123 456-0", "76123456-0"),
    ])
    def test_format(self, raw, expected):
        assert format_rut(raw) == expected

    def test_split(self):
        assert split_rut("76.123.456-0") == ("76123456", "0")

    def test_check_digit(self):
        assert compute_dv("12345678") == "5"
        assert compute_dv("76123456") == "0"
        assert compute_dv("66666666") == "6"
        assert compute_dv("6") == "K"

    @pytest.mark.parametrize("rut", ["76123456-0", "66666666-6", "12.345.678-5"])
    def test_valid(self, rut):
        assert validate_rut(rut)

    @pytest.mark.parametrize("rut", ["12345678-9", "abc-1", "", "1234567-"])
    def test_invalid(self, rut):
        assert not validate_rut(rut)


class TestHelpers:
    def test_format_clp(self):
        assert format_clp(25000) == "$25.000"
        assert format_clp(1234567) == "$1.234.567"
        assert format_clp(None) == "$0"

    def test_demo_track_id_shape(self):
        assert re.fullmatch(r"DEMO-\d+-[0-9A-F]{6}", generate_demo_track_id())

    def test_demo_track_ids_unique(self):
        assert len({generate_demo_track_id() for _ in range(200)}) == 200

    def test_cl_date_format(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", current_cl_date())


class TestEstados:
    def test_forward_transitions(self):
        assert can_transition(EstadoBoleta.BORRADOR, EstadoBoleta.ENVIADO)
        assert can_transition("ENVIADO", "PROCESANDO")
        assert can_transition("PROCESANDO", "ACEPTADO")

    def test_no_backward_transitions(self):
        assert not can_transition("ACEPTADO", "PROCESANDO")
        assert not can_transition("PROCESANDO", "ENVIADO")
        assert not can_transition("RECHAZADO", "ACEPTADO")

    def test_terminal_states(self):
        assert {e for e in EstadoBoleta if is_terminal(e)} == {
            EstadoBoleta.ACEPTADO, EstadoBoleta.RECHAZADO, EstadoBoleta.ERROR,
        }
