"""
BOLETA-SII Core Configuration
SII endpoint registry, emisor identity and application settings.
"""

from enum import Enum
from typing import Optional

from pydantic_settings import BaseSettings


class SIIMode(str, Enum):
    DEMO = "demo"
    CERTIFICACION = "certificacion"
    PRODUCCION = "produccion"


class SIIEnvironment(str, Enum):
    CERTIFICACION = "certificacion"
    PRODUCCION = "produccion"


class Settings(BaseSettings):
    app_name: str = "BOLETA-SII"
    app_version: str = "1.0.0"
    debug: bool = True
    host: str = "0.0.0.0"
    port: int = 8000

    # Operation mode: demo never signs for real nor talks to the SII
    mode: SIIMode = SIIMode.DEMO
    sii_environment: SIIEnvironment = SIIEnvironment.CERTIFICACION

    # Explicit endpoint overrides; empty means "use the registry"
    sii_api_url: Optional[str] = None
    sii_upload_endpoint: Optional[str] = None
    sii_query_endpoint: Optional[str] = None

    # Emisor
    sii_rut_empresa: str = "76123456-0"
    sii_razon_social: str = "CLINICA VETERINARIA FAVET DEMO LTDA"
    sii_giro: str = "SERVICIOS VETERINARIOS"
    sii_actividad_economica: str = "752000"
    sii_direccion: str = "Av. Santa Rosa 11735, La Pintana"
    sii_comuna: str = "La Pintana"
    sii_ciudad: str = "Santiago"

    # Certificado digital (.pfx / .p12)
    sii_cert_path: str = ""
    sii_cert_password: str = ""

    # Resolución SII que autoriza la emisión
    sii_resolucion_numero: str = "0"
    sii_resolucion_fecha: str = "2014-08-22"

    supabase_url: str = ""
    supabase_service_role_key: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_demo(self) -> bool:
        return self.mode == SIIMode.DEMO

    def validate_config(self) -> list[str]:
        """
        Return the list of configuration problems (empty when usable).
        Certificate path and password are only required outside demo mode.
        """
        errors: list[str] = []
        if not self.sii_rut_empresa.strip():
            errors.append("SII_RUT_EMPRESA no está configurado")
        if not self.sii_razon_social.strip():
            errors.append("SII_RAZON_SOCIAL no está configurado")
        if not self.is_demo and not self.sii_cert_path:
            errors.append('SII_CERT_PATH es requerido cuando MODE no es "demo"')
        if not self.is_demo and not self.sii_cert_password:
            errors.append('SII_CERT_PASSWORD es requerido cuando MODE no es "demo"')
        return errors

    def get_emisor(self) -> dict:
        return {
            "rut": self.sii_rut_empresa,
            "razon_social": self.sii_razon_social,
            "giro": self.sii_giro,
            "actividad_economica": self.sii_actividad_economica,
            "direccion": self.sii_direccion,
            "comuna": self.sii_comuna,
            "ciudad": self.sii_ciudad,
        }


settings = Settings()


# ─────────────────────────────────────────────────────────────
# SII URL REGISTRY
# maullin.sii.cl = ambiente de certificación
# palena.sii.cl  = ambiente de producción
# ─────────────────────────────────────────────────────────────

SII_URLS = {
    SIIEnvironment.CERTIFICACION: {
        "api":    "https://maullin.sii.cl",
        "upload": "https://maullin.sii.cl/cgi_dte/UPL/DTEUpload",
        "query":  "https://maullin.sii.cl/cgi_dte/UPL/DTEQueryStatus",
    },
    SIIEnvironment.PRODUCCION: {
        "api":    "https://palena.sii.cl",
        "upload": "https://palena.sii.cl/cgi_dte/UPL/DTEUpload",
        "query":  "https://palena.sii.cl/cgi_dte/UPL/DTEQueryStatus",
    },
}

_OVERRIDES = {
    "api": "sii_api_url",
    "upload": "sii_upload_endpoint",
    "query": "sii_query_endpoint",
}


def get_sii_url(service: str, cfg: Optional[Settings] = None) -> str:
    """Get the SII URL for a service, honoring explicit env overrides."""
    cfg = cfg or settings
    override_field = _OVERRIDES.get(service)
    if not override_field:
        raise ValueError(f"Unknown SII service: {service}")
    override = getattr(cfg, override_field)
    if override:
        return override
    urls = SII_URLS.get(cfg.sii_environment)
    if not urls:
        raise ValueError(f"Unknown SII environment: {cfg.sii_environment}")
    return urls[service]
