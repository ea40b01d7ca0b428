# telemetry.py
# Registra eventos estruturados (uma linha JSON por evento) do fluxo de mensagens:
# quantos FAQs foram usados como contexto, latência, falhas de LLM/WhatsApp.

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

TELEMETRY_LOG_DIR = os.getenv("TELEMETRY_LOG_DIR", "logs")
TELEMETRY_LOG_FILE = os.getenv("TELEMETRY_LOG_FILE", "events.log")

# Instância única do logger; evita adicionar handlers repetidos.
_telemetry_logger = None


def _get_logger(log_dir: str, filename: str) -> logging.Logger | None:
    """
    Configura e devolve o logger de telemetria.

    O `RotatingFileHandler` troca de arquivo aos 10MB e mantém 5 backups.
    """
    global _telemetry_logger
    if _telemetry_logger is not None:
        return _telemetry_logger

    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            os.path.join(log_dir, filename),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        # A mensagem já é um JSON completo.
        handler.setFormatter(logging.Formatter("%(message)s"))

        logger = logging.getLogger("faqbot.telemetry")
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)
        logger.propagate = False

        _telemetry_logger = logger
        return _telemetry_logger
    except OSError as e:
        print(f"CRITICAL: Falha ao inicializar o logger de telemetria: {e}", flush=True)
        return None


def log_event(event: str, payload: dict | None = None, *, log_dir: str | None = None) -> None:
    """Escreve o evento `event` com os campos de `payload` no log rotativo."""
    logger = _get_logger(log_dir or TELEMETRY_LOG_DIR, TELEMETRY_LOG_FILE)
    if not logger:
        return

    record = {"event": event}
    record.update(payload or {})
    record["ts_iso"] = datetime.now(timezone.utc).isoformat()
    try:
        logger.info(json.dumps(record, ensure_ascii=False, default=str))
    except (TypeError, ValueError) as e:
        print(f"WARN: Falha ao registrar o evento de telemetria: {e}", flush=True)


def reset_logger() -> None:
    """Remove os handlers do logger (usado nos testes)."""
    global _telemetry_logger
    if _telemetry_logger is not None:
        for handler in list(_telemetry_logger.handlers):
            _telemetry_logger.removeHandler(handler)
            handler.close()
    _telemetry_logger = None
