"""
Connectivity check for the two upstreams: the first sheet URL and the first
Gemini key. Each is reported as connected / error / unconfigured.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Optional

import httpx

from school_assistant.core.config import Settings
from school_assistant.services.gemini_client import GeminiGateway

logger = logging.getLogger(__name__)


@dataclass
class StatusDetail:
    status: str
    message: str


async def check_sheets(cfg: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> StatusDetail:
    sources = cfg.data_sources()
    if not sources:
        return StatusDetail("unconfigured", "URL Google Sheets belum dikonfigurasi.")

    first = sources[0]
    try:
        async with httpx.AsyncClient(
            timeout=cfg.DATA_FETCH_TIMEOUT_SECONDS, follow_redirects=True, transport=transport
        ) as client:
            response = await client.get(first.url)
    except httpx.HTTPError as e:
        return StatusDetail("error", f"Gagal menghubungi URL Google Sheets pertama. Error: {e}")

    if response.status_code < 400:
        return StatusDetail("connected", "Koneksi ke Google Sheets berhasil.")
    return StatusDetail(
        "error",
        f"Gagal terhubung ke URL pertama (Status: {response.status_code}). Periksa URL dan pastikan sheet dipublikasikan.",
    )


async def check_gemini(cfg: Settings, gateway: GeminiGateway) -> StatusDetail:
    if not cfg.gemini_api_keys:
        return StatusDetail("unconfigured", "Kunci API Gemini belum dikonfigurasi.")
    try:
        await gateway.probe(cfg.DEFAULT_MODEL)
    except Exception as e:
        logger.warning(f"Gemini probe failed: {e}")
        return StatusDetail(
            "error",
            f"Kunci API Gemini pertama tidak valid atau ada masalah jaringan. Error: {str(e)[:150]}...",
        )
    return StatusDetail("connected", "Koneksi ke Gemini API berhasil.")


async def service_status(cfg: Settings, gateway: GeminiGateway) -> dict:
    sheets = await check_sheets(cfg)
    gemini = await check_gemini(cfg, gateway)
    return {"sheets": asdict(sheets), "gemini": asdict(gemini)}
