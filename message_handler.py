# message_handler.py
# Orquestra o processamento de uma mensagem recebida pelo webhook do WhatsApp:
# deduplicação, histórico, contexto de FAQ, chamada ao LLM e envio da resposta.

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import conversation_store
from faq_ranker import DEFAULT_CONFIG, FaqPreparationCache, RankerConfig, rank_faqs, render_faq_context
from faq_store import FaqStore
from llm_client import generate_reply
from telemetry import log_event
from whatsapp_client import WhatsAppError, human_delay_ms, send_text, send_typing_indicator

NON_TEXT_REPLY = "Por enquanto eu só entendo texto 🙂"
ERROR_REPLY = "Desculpe, tive um problema aqui. Pode repetir?"
TYPING_REFRESH_SECONDS = 20.0


@dataclass
class InboundMessage:
    wa_id: str
    wa_message_id: Optional[str]
    msg_type: str
    text: Optional[str]
    profile_name: Optional[str] = None


def _first(items: Any) -> Any:
    if isinstance(items, list) and items:
        return items[0]
    return None


def extract_inbound(payload: Any) -> Optional[InboundMessage]:
    """Extrai a primeira mensagem de `entry[0].changes[0].value.messages[0]`."""
    if not isinstance(payload, dict):
        return None
    change = _first((_first(payload.get("entry")) or {}).get("changes"))
    value = (change or {}).get("value") or {}
    msg = _first(value.get("messages"))
    if not isinstance(msg, dict):
        return None

    wa_id = msg.get("from")
    if not isinstance(wa_id, str) or not wa_id:
        return None

    profile = ((_first(value.get("contacts")) or {}).get("profile") or {}).get("name")
    profile_name = profile.strip() if isinstance(profile, str) and profile.strip() else None

    text = (msg.get("text") or {}).get("body")
    return InboundMessage(
        wa_id=wa_id,
        wa_message_id=msg.get("id") if isinstance(msg.get("id"), str) else None,
        msg_type=str(msg.get("type") or ""),
        text=text if isinstance(text, str) else None,
        profile_name=profile_name,
    )


def faq_context_for(
    store: FaqStore,
    text: str,
    config: RankerConfig = DEFAULT_CONFIG,
    cache: Optional[FaqPreparationCache] = None,
) -> Dict[str, Any]:
    """
    Lê os FAQs ativos e ranqueia para `text`.

    Falha na leitura do armazenamento equivale a "sem contexto de FAQ".
    """
    try:
        active = store.list_active_faqs()
    except Exception as e:
        print(f"[FAQ] ERROR: leitura dos FAQs falhou: {type(e).__name__}: {e}", flush=True)
        return {"context": "", "ranked": [], "store_error": str(e)}

    ranked = rank_faqs(active, text, config, cache=cache)
    return {"context": render_faq_context(ranked), "ranked": ranked, "active": len(active)}


def _keep_typing(wa_message_id: str, stop: threading.Event, interval: float) -> None:
    while not stop.wait(interval):
        send_typing_indicator(wa_message_id)


def _reply_with_typing(history: List[Dict[str, str]], faq_context: str, wa_message_id: Optional[str]) -> str:
    if not wa_message_id:
        return generate_reply(history, faq_context)

    stop = threading.Event()
    keeper = threading.Thread(
        target=_keep_typing, args=(wa_message_id, stop, TYPING_REFRESH_SECONDS), daemon=True
    )
    keeper.start()
    try:
        return generate_reply(history, faq_context)
    finally:
        stop.set()
        keeper.join(timeout=1)


def handle_webhook_payload(
    payload: Any,
    *,
    store: FaqStore,
    config: RankerConfig = DEFAULT_CONFIG,
    cache: Optional[FaqPreparationCache] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """
    Processa um POST do webhook. Devolve um resumo (usado em testes e telemetria).

    Args:
        payload: Corpo JSON enviado pela Meta.
        store: Fonte dos FAQs ativos.
        sleep: Função usada para o atraso "humano" antes do envio.
    """
    ts0 = time.time()
    inbound = extract_inbound(payload)
    if inbound is None:
        return {"status": "ignored"}

    if not conversation_store.register_inbound(inbound.wa_message_id):
        print(f"[WEBHOOK] mensagem duplicada ignorada: {inbound.wa_message_id}", flush=True)
        return {"status": "duplicate"}

    if inbound.msg_type != "text":
        conversation_store.append_message(inbound.wa_id, "user", f"[{inbound.msg_type}]")
        send_text(inbound.wa_id, NON_TEXT_REPLY)
        conversation_store.append_message(inbound.wa_id, "assistant", NON_TEXT_REPLY)
        return {"status": "non_text", "reply": NON_TEXT_REPLY}

    if not inbound.text:
        return {"status": "ignored"}

    conversation_store.append_message(inbound.wa_id, "user", inbound.text)
    history = conversation_store.load_history(inbound.wa_id)
    if not history:
        history = [{"role": "user", "content": inbound.text}]

    faq = faq_context_for(store, inbound.text, config, cache)

    send_typing_indicator(inbound.wa_message_id)
    llm_error = None
    try:
        reply = _reply_with_typing(history, faq["context"], inbound.wa_message_id)
    except Exception as e:
        print(f"[LLM] error: {type(e).__name__}: {e}", flush=True)
        llm_error = str(e)
        reply = ERROR_REPLY

    sleep(human_delay_ms(reply) / 1000.0)
    send_text(inbound.wa_id, reply)
    conversation_store.append_message(inbound.wa_id, "assistant", reply)

    ranked = faq["ranked"]
    log_event("webhook_reply", {
        "wa_message_id": inbound.wa_message_id,
        "faq_hits": len(ranked),
        "faq_top_score": ranked[0].score if ranked else 0,
        "faq_store_error": faq.get("store_error"),
        "llm_error": llm_error,
        "took_ms": int((time.time() - ts0) * 1000),
    })
    return {"status": "replied", "reply": reply, "faq_hits": len(ranked)}


def process_in_background(payload: Any, **kwargs: Any) -> threading.Thread:
    """Dispara `handle_webhook_payload` em uma thread; erros são registrados, nunca propagados."""

    def _run() -> None:
        try:
            handle_webhook_payload(payload, **kwargs)
        except WhatsAppError as e:
            print(f"[WA] Falha ao enviar resposta: {e}", flush=True)
            log_event("webhook_error", {"error": f"{type(e).__name__}: {e}"})
        except Exception as e:
            import traceback
            print(f"[WEBHOOK] Webhook processing error: {e}\n{traceback.format_exc()}", flush=True)
            log_event("webhook_error", {"error": f"{type(e).__name__}: {e}"})

    worker = threading.Thread(target=_run, daemon=True)
    worker.start()
    return worker


__all__ = [
    "ERROR_REPLY",
    "InboundMessage",
    "NON_TEXT_REPLY",
    "extract_inbound",
    "faq_context_for",
    "handle_webhook_payload",
    "process_in_background",
]
