"""
BOLETA-SII — SII Utilities
RUT normalization/validation and identifier helpers.
"""

import re
import time
import uuid
from datetime import datetime, timezone, timedelta


def format_rut(rut: str) -> str:
    """
    Normalize a RUT to the SII canonical form BODY-DV.
    "12.345.678-5" / "12345678 5" / "123456785" -> "12345678-5"
    The check digit is upper-cased (k -> K).
    """
    clean = re.sub(r"[.\s]", "", rut or "").upper()
    if not clean:
        return clean
    if "-" not in clean:
        clean = f"{clean[:-1]}-{clean[-1]}"
    return clean


def split_rut(rut: str) -> tuple[str, str]:
    """Return (body, dv) of a RUT in any accepted input format."""
    body, _, dv = format_rut(rut).partition("-")
    return body, dv


def compute_dv(body: str) -> str:
    """
    Módulo 11 check digit.
    Weights 2..7 are applied right to left, cycling.
    """
    total = 0
    factor = 2
    for digit in reversed(body):
        total += int(digit) * factor
        factor = 2 if factor == 7 else factor + 1
    rest = 11 - (total % 11)
    if rest == 11:
        return "0"
    if rest == 10:
        return "K"
    return str(rest)


def validate_rut(rut: str) -> bool:
    body, dv = split_rut(rut)
    if not body.isdigit() or len(dv) != 1:
        return False
    return compute_dv(body) == dv


def generate_demo_track_id() -> str:
    """
    Fake SII track id for demo mode: DEMO-{epoch ms}-{random}.
    Unique across calls within a process.
    """
    return f"DEMO-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


def current_cl_date() -> str:
    """
    Current date in Chile continental time (UTC-4), formatted YYYY-MM-DD.
    """
    cl_time = datetime.now(timezone.utc) - timedelta(hours=4)
    return cl_time.strftime("%Y-%m-%d")


def format_clp(amount) -> str:
    """Format an amount in pesos: 25000 -> "$25.000"."""
    value = int(round(amount or 0))
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,}".replace(",", ".")
