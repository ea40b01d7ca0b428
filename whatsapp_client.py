# whatsapp_client.py
# Cliente mínimo da WhatsApp Cloud API: envio de texto, indicador de digitação
# e o atraso "humano" aplicado antes de enviar cada resposta.

from __future__ import annotations

import os
import random
from typing import Any, Dict, Optional

import requests

WHATSAPP_TOKEN = os.getenv("WHATSAPP_TOKEN", "")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
GRAPH_API_VERSION = os.getenv("GRAPH_API_VERSION", "v20.0")
HTTP_TIMEOUT = 15


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(str(raw).strip()) if raw is not None else default
    except ValueError:
        return default


HUMAN_DELAY_MIN_MS = _env_int("HUMAN_DELAY_MIN_MS", 1200)
HUMAN_DELAY_MAX_MS = _env_int("HUMAN_DELAY_MAX_MS", 6500)


class WhatsAppError(RuntimeError):
    """Resposta não-2xx da Graph API ao enviar mensagem."""


def is_configured() -> bool:
    return bool(WHATSAPP_TOKEN and WHATSAPP_PHONE_NUMBER_ID)


def _messages_url() -> str:
    return f"https://graph.facebook.com/{GRAPH_API_VERSION}/{WHATSAPP_PHONE_NUMBER_ID}/messages"


def _post(payload: Dict[str, Any]) -> requests.Response:
    return requests.post(
        _messages_url(),
        json=payload,
        headers={"Authorization": f"Bearer {WHATSAPP_TOKEN}"},
        timeout=HTTP_TIMEOUT,
    )


def send_text(to: str, body: str) -> None:
    """Envia uma mensagem de texto. Levanta `WhatsAppError` se a API recusar."""
    if not is_configured():
        print("[WA] WhatsApp config missing", flush=True)
        return

    resp = _post({
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": body, "preview_url": False},
    })
    if not resp.ok:
        raise WhatsAppError(f"WhatsApp HTTP {resp.status_code}: {resp.text}")


def send_typing_indicator(wa_message_id: Optional[str]) -> None:
    """Marca a mensagem como lida e mostra "digitando...". Falhas apenas são registradas."""
    if not is_configured() or not wa_message_id:
        return

    try:
        resp = _post({
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": wa_message_id,
            "typing_indicator": {"type": "text"},
        })
    except requests.RequestException as e:
        print(f"[WA] Typing indicator error: {e}", flush=True)
        return
    if not resp.ok:
        print(f"[WA] Typing indicator HTTP {resp.status_code}: {resp.text}", flush=True)


def human_delay_ms(reply: str, *, rng: Optional[random.Random] = None) -> int:
    """Atraso proporcional ao tamanho da resposta, limitado a [min, max], com jitter de até 499ms."""
    low = max(0, min(HUMAN_DELAY_MIN_MS, HUMAN_DELAY_MAX_MS))
    high = max(low, max(HUMAN_DELAY_MIN_MS, HUMAN_DELAY_MAX_MS))
    by_length = max(low, min(high, 800 + len(reply or "") * 45))
    jitter = (rng or random).randrange(500)
    return min(high, by_length + jitter)


__all__ = [
    "WhatsAppError",
    "human_delay_ms",
    "is_configured",
    "send_text",
    "send_typing_indicator",
]
