"""
BOLETA-SII: Dependencias FastAPI
================================
Inyección de dependencias. El modo (demo / certificación / producción)
se resuelve aquí, una vez, al construir los backends de firma y envío.
"""
from functools import lru_cache

from fastapi import Depends
from supabase import create_client, Client as SupabaseClient

from boleta_sii.core.config import Settings, settings
from boleta_sii.modules.sign_engine import Signer, build_signer
from boleta_sii.modules.transmit_service import SubmissionBackend, build_submission_backend
from boleta_sii.services.boleta_repository import BoletaRepository
from boleta_sii.services.boleta_service import BoletaService


# ── Singletons ──

def get_settings() -> Settings:
    return settings


@lru_cache()
def get_supabase() -> SupabaseClient:
    """Supabase client singleton (service role)."""
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


@lru_cache()
def get_signer() -> Signer:
    """Signer singleton; its certificate is loaded on first real signature."""
    return build_signer(settings)


@lru_cache()
def get_submission_backend() -> SubmissionBackend:
    return build_submission_backend(settings)


def get_boleta_service(
    cfg: Settings = Depends(get_settings),
    supabase: SupabaseClient = Depends(get_supabase),
    signer: Signer = Depends(get_signer),
    submission: SubmissionBackend = Depends(get_submission_backend),
) -> BoletaService:
    """BoletaService con repositorio, firma y envío inyectados."""
    return BoletaService(
        settings=cfg,
        repository=BoletaRepository(supabase),
        signer=signer,
        submission=submission,
    )
