"""Redis-backed helpers for inbound deduplication and short conversation history."""

from __future__ import annotations

import json
import os
import threading
from typing import Dict, List, Optional

import redis


_LOCK = threading.Lock()
_REDIS_CLIENT: Optional["redis.Redis"] = None

DEDUP_NAMESPACE = "wa:seen"
HISTORY_NAMESPACE = "wa:history"

VALID_ROLES = ("user", "assistant")


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        value = default
    return max(value, minimum)


def _get_client() -> Optional["redis.Redis"]:
    """Return a memoised Redis client when REDIS_URL is set."""
    url = os.getenv("REDIS_URL")
    if not url:
        return None

    global _REDIS_CLIENT
    if _REDIS_CLIENT is not None:
        return _REDIS_CLIENT

    with _LOCK:
        if _REDIS_CLIENT is None:
            try:
                _REDIS_CLIENT = redis.Redis.from_url(url, decode_responses=True)
            except (ValueError, redis.RedisError) as exc:
                print(f"[STORE] WARN: REDIS_URL inválida: {exc}", flush=True)
                _REDIS_CLIENT = None
        return _REDIS_CLIENT


def history_limit() -> int:
    return _env_int("HISTORY_LIMIT", 20, minimum=1)


def _dedup_key(wa_message_id: str) -> str:
    return f"{DEDUP_NAMESPACE}:{wa_message_id}"


def _history_key(wa_id: str) -> str:
    return f"{HISTORY_NAMESPACE}:{wa_id}"


def register_inbound(wa_message_id: Optional[str]) -> bool:
    """Mark an inbound message id as seen. Returns False when it was already seen.

    WhatsApp retries webhook deliveries; a repeated id must not produce a second reply.
    Without Redis (or without an id) every message is treated as new.
    """
    client = _get_client()
    if client is None or not wa_message_id:
        return True

    ttl = _env_int("DEDUP_TTL_SECONDS", 86400)
    try:
        created = client.set(_dedup_key(wa_message_id), "1", nx=True, ex=ttl or None)
    except redis.RedisError as exc:
        print(f"[STORE] WARN: falha ao registrar mensagem {wa_message_id}: {exc}", flush=True)
        return True
    return bool(created)


def append_message(wa_id: str, role: str, content: str) -> bool:
    """Append one turn to the contact history, trimmed to HISTORY_LIMIT."""
    if role not in VALID_ROLES:
        raise ValueError(f"role inválido: {role!r}")

    client = _get_client()
    if client is None:
        return False

    key = _history_key(wa_id)
    encoded = json.dumps({"role": role, "content": content}, ensure_ascii=False)
    ttl = _env_int("HISTORY_TTL_SECONDS", 7 * 24 * 3600)
    try:
        pipe = client.pipeline()
        pipe.rpush(key, encoded)
        pipe.ltrim(key, -history_limit(), -1)
        if ttl > 0:
            pipe.expire(key, ttl)
        pipe.execute()
    except redis.RedisError as exc:
        print(f"[STORE] WARN: falha ao gravar histórico de {wa_id}: {exc}", flush=True)
        return False
    return True


def load_history(wa_id: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
    """Return up to ``limit`` turns, oldest first."""
    client = _get_client()
    if client is None:
        return []

    limit = limit or history_limit()
    try:
        raw_items = client.lrange(_history_key(wa_id), -limit, -1)
    except redis.RedisError as exc:
        print(f"[STORE] WARN: falha ao ler histórico de {wa_id}: {exc}", flush=True)
        return []

    history: List[Dict[str, str]] = []
    for raw in raw_items:
        try:
            item = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            continue
        if isinstance(item, dict) and item.get("role") in VALID_ROLES:
            history.append({"role": item["role"], "content": str(item.get("content", ""))})
    return history


def clear_history(wa_id: str) -> int:
    client = _get_client()
    if client is None:
        return 0
    try:
        return int(client.delete(_history_key(wa_id)))
    except redis.RedisError:
        return 0


def reset_client() -> None:
    """Used in tests to drop the memoised Redis client."""
    global _REDIS_CLIENT
    with _LOCK:
        _REDIS_CLIENT = None


__all__ = [
    "DEDUP_NAMESPACE",
    "HISTORY_NAMESPACE",
    "append_message",
    "clear_history",
    "history_limit",
    "load_history",
    "register_inbound",
    "reset_client",
]
