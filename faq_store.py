"""File-backed FAQ store: the read-only supplier of active FAQ entries."""

from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict, List, Optional, Tuple

import yaml

from faq_ranker import FaqEntry


FAQ_STORE_PATH = os.getenv("FAQ_STORE_PATH", "config/faqs.yml")

_TRUE_VALUES = {"1", "true", "yes", "on", "sim"}


class FaqStoreError(RuntimeError):
    """Raised when the FAQ file cannot be read or parsed."""


def _coerce_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _parse_entries(data: Any, path: str) -> List[FaqEntry]:
    if isinstance(data, dict):
        data = data.get("faqs", [])
    if data is None:
        return []
    if not isinstance(data, list):
        raise FaqStoreError(f"Formato inválido em {path}: esperado lista de FAQs.")

    entries: List[FaqEntry] = []
    for index, raw in enumerate(data):
        if not isinstance(raw, dict):
            print(f"[FAQ] WARN: item {index} ignorado em {path} (não é objeto).", flush=True)
            continue
        question = raw.get("question")
        answer = raw.get("answer")
        if not isinstance(question, str) or not isinstance(answer, str):
            print(f"[FAQ] WARN: item {index} ignorado em {path} (sem question/answer).", flush=True)
            continue
        updated_at = raw.get("updated_at")
        entries.append(
            FaqEntry(
                question=question,
                answer=answer,
                is_active=_coerce_bool(raw.get("is_active", raw.get("isActive"))),
                entry_id=str(raw.get("id", index)),
                updated_at=str(updated_at) if updated_at is not None else None,
            )
        )
    return entries


def load_faq_file(path: str) -> List[FaqEntry]:
    """Read every FAQ (active or not) from a YAML or JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.lower().endswith(".json"):
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise FaqStoreError(f"Arquivo de FAQ não encontrado: {path}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise FaqStoreError(f"Falha ao ler {path}: {exc}") from exc
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise FaqStoreError(f"Arquivo de FAQ malformado: {path}: {exc}") from exc
    return _parse_entries(data, path)


class FaqStore:
    """Keeps the parsed FAQ file in memory and reloads it when its mtime changes."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or FAQ_STORE_PATH
        self._lock = threading.Lock()
        self._cached: Optional[Tuple[float, List[FaqEntry]]] = None

    def _mtime(self) -> float:
        try:
            return os.path.getmtime(self.path)
        except OSError as exc:
            raise FaqStoreError(f"Arquivo de FAQ não encontrado: {self.path}") from exc

    def list_faqs(self) -> List[FaqEntry]:
        mtime = self._mtime()
        with self._lock:
            if self._cached is not None and self._cached[0] == mtime:
                return list(self._cached[1])
        entries = load_faq_file(self.path)
        with self._lock:
            self._cached = (mtime, entries)
        print(f"[FAQ] {len(entries)} FAQs carregados de {self.path}", flush=True)
        return list(entries)

    def list_active_faqs(self) -> List[FaqEntry]:
        return [entry for entry in self.list_faqs() if entry.is_active]

    def stats(self) -> Dict[str, int]:
        entries = self.list_faqs()
        active = sum(1 for e in entries if e.is_active)
        return {"total": len(entries), "active": active}


__all__ = ["FAQ_STORE_PATH", "FaqStore", "FaqStoreError", "load_faq_file"]
