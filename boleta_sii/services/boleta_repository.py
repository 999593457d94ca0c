"""
BOLETA-SII: Persistencia de boletas (Supabase)
==============================================
Tablas:
  centros                 emisores físicos (sucursales de la clínica)
  boletas_electronicas    un registro por boleta, con su estado SII
  boleta_items            líneas de detalle
RPC:
  get_next_folio_boleta   folio atómico por centro
"""
import logging
from typing import Optional

from supabase import Client as SupabaseClient

from boleta_sii.core.exceptions import BoletaError

logger = logging.getLogger(__name__)


class BoletaRepository:
    def __init__(self, supabase: SupabaseClient):
        self.db = supabase

    def get_centro(self, centro_id: int) -> Optional[dict]:
        result = self.db.table("centros").select("*").eq(
            "id", centro_id).maybe_single().execute()
        return result.data if result else None

    def next_folio(self, centro_id: int) -> int:
        seq_result = self.db.rpc("get_next_folio_boleta", {
            "p_centro_id": centro_id,
        }).execute()
        if not seq_result.data:
            raise BoletaError("Error generando folio de boleta", code="SEQ_ERROR")
        return int(seq_result.data[0]["folio"])

    def create_boleta(self, record: dict, items: list[dict]) -> dict:
        insert_result = self.db.table("boletas_electronicas").insert(record).execute()
        if not insert_result.data:
            raise BoletaError("Error guardando la boleta", code="DB_INSERT_ERROR")
        boleta = insert_result.data[0]

        if items:
            rows = [{**item, "boleta_id": boleta["id"]} for item in items]
            self.db.table("boleta_items").insert(rows).execute()

        logger.info(f"Boleta guardada: id={boleta['id']}, folio={boleta.get('folio')}")
        return boleta

    def update_boleta(self, boleta_id: int, changes: dict) -> None:
        self.db.table("boletas_electronicas").update(changes).eq(
            "id", boleta_id).execute()

    def get_by_track_id(self, track_id: str) -> Optional[dict]:
        result = self.db.table("boletas_electronicas").select("*").eq(
            "track_id", track_id).maybe_single().execute()
        return result.data if result else None

    def get_by_id(self, boleta_id: int) -> Optional[dict]:
        result = self.db.table("boletas_electronicas").select(
            "*, boleta_items(*)").eq("id", boleta_id).maybe_single().execute()
        return result.data if result else None
