# llm_client.py
# Este módulo monta as mensagens enviadas ao LLM (persona + contexto de FAQ + histórico)
# e faz a chamada de chat-completion em um provedor compatível com a API da OpenAI (Groq por padrão).

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import OpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

# --- CONFIGURAÇÕES DO PROVEDOR ---
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1")
LLM_API_KEY = os.getenv("GROQ_API_KEY") or os.getenv("OPENAI_API_KEY") or ""
LLM_MODEL = os.getenv("GROQ_MODEL") or os.getenv("OPENAI_MODEL") or ""
BOT_PERSONA = os.getenv("BOT_PERSONA", "")

# --- MENSAGENS PADRÃO ---
MISSING_CONFIG_REPLY = "Configuração incompleta da IA."
EMPTY_REPLY = "Desculpe, não consegui responder agora."

FAQ_CONTEXT_TEMPLATE = (
    "Base de FAQ relevante:\n{context}\n\n"
    "Regra: use primeiro as informacoes acima. Se nao houver informacao suficiente no FAQ, "
    "diga que nao tem essa informacao no momento e ofereca encaminhamento humano."
)
NO_FAQ_RULE = "Regra: se nao tiver certeza, diga que vai verificar e ofereca encaminhamento humano."

_client: Optional[OpenAI] = None


class LLMError(RuntimeError):
    """Falha definitiva na chamada ao LLM (após as retentativas)."""


def is_configured() -> bool:
    return bool(LLM_API_KEY and LLM_MODEL)


def _lazy_client() -> OpenAI:
    """Cria o cliente OpenAI apenas uma vez."""
    global _client
    if _client is None:
        _client = OpenAI(api_key=LLM_API_KEY, base_url=LLM_BASE_URL)
        print(f"[LLM] Using {LLM_BASE_URL} model={LLM_MODEL}", flush=True)
    return _client


def build_messages(history: Sequence[Dict[str, str]], faq_context: str) -> List[Dict[str, str]]:
    """
    Monta a lista de mensagens: persona, regra/contexto de FAQ e o histórico da conversa.

    Sem contexto de FAQ o modelo recebe apenas a regra de encaminhamento humano.
    """
    context = (faq_context or "").strip()
    faq_message = FAQ_CONTEXT_TEMPLATE.format(context=faq_context) if context else NO_FAQ_RULE
    messages = [
        {"role": "system", "content": BOT_PERSONA},
        {"role": "system", "content": faq_message},
    ]
    for turn in history:
        role = turn.get("role")
        if role in ("user", "assistant"):
            messages.append({"role": role, "content": str(turn.get("content", ""))})
    return messages


@retry(
    wait=wait_exponential(multiplier=1, min=2, max=10),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(openai.OpenAIError),
    reraise=True,
)
def _create_completion(messages: List[Dict[str, str]]) -> Any:
    """Chamada ao provedor com retentativas (Tenacity)."""
    client = _lazy_client()
    try:
        return client.chat.completions.create(model=LLM_MODEL, messages=messages)
    except openai.OpenAIError as e:
        print(f"[LLM] ERROR: Falha na chamada de chat-completion: {e}", flush=True)
        raise


def _extract_content(resp: Any) -> str:
    try:
        content = resp.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        return ""
    return content.strip() if isinstance(content, str) else ""


def generate_reply(history: Sequence[Dict[str, str]], faq_context: str) -> str:
    """Gera a resposta do bot. Levanta `LLMError` se todas as retentativas falharem."""
    if not is_configured():
        return MISSING_CONFIG_REPLY

    messages = build_messages(history, faq_context)
    try:
        resp = _create_completion(messages)
    except openai.OpenAIError as e:
        raise LLMError(f"Chamada ao LLM falhou após retentativas: {e}") from e

    return _extract_content(resp) or EMPTY_REPLY


__all__ = [
    "EMPTY_REPLY",
    "LLMError",
    "MISSING_CONFIG_REPLY",
    "build_messages",
    "generate_reply",
    "is_configured",
]
