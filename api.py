# api.py
from __future__ import annotations
import os, time, uuid, json
from collections import Counter
from typing import Any, Dict

from dotenv import load_dotenv

load_dotenv()

from flask import Flask, request, jsonify
from flask_cors import CORS

# --- Importações dos Módulos da Aplicação ---
import llm_client
from faq_ranker import FaqPreparationCache, load_ranker_config
from faq_store import FaqStore, FaqStoreError
from message_handler import faq_context_for, process_in_background

# --- Configurações do Ambiente ---
WEBHOOK_VERIFY_TOKEN = os.getenv("WEBHOOK_VERIFY_TOKEN", "")
REQUIRE_LLM_READY = os.getenv("REQUIRE_LLM_READY", "false").lower() in ("1", "true", "yes")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

# --- Estado compartilhado ---
# Carregados uma vez na importação; os testes substituem via monkeypatch.
faq_store = FaqStore()
ranker_config = load_ranker_config()
preparation_cache = FaqPreparationCache()

# --- Métricas e Inicialização do Flask ---
METRICS = Counter()
START_TS = time.time()
METRICS["webhook_received_total"] = 0
METRICS["webhook_verify_failed_total"] = 0
METRICS["faq_context_requests_total"] = 0

app = Flask(__name__)
CORS(app, origins=ALLOWED_ORIGINS, supports_credentials=True)


# --- Funções de Verificação de Prontidão (Probes) ---
def _probe_faq_store() -> bool:
    """Verifica se o arquivo de FAQ pode ser lido."""
    try:
        faq_store.list_faqs()
        return True
    except FaqStoreError as exc:
        print(f"[API] WARN: FAQ store indisponível: {exc}", flush=True)
        return False


def _probe_llm() -> bool:
    return llm_client.is_configured()


# --- Rotas da API Flask ---

@app.get("/")
def root():
    return jsonify({"status": "ok"})


@app.get("/healthz")
def healthz():
    """Endpoint de health check, usado por orquestradores como Kubernetes."""
    faq_ok = _probe_faq_store()
    llm_ok = _probe_llm()
    ready = faq_ok and (llm_ok if REQUIRE_LLM_READY else True)
    status = {
        "ready": ready,
        "faq_ok": faq_ok,
        "llm_ok": llm_ok,
        "require_llm_ready": REQUIRE_LLM_READY,
    }
    return jsonify(status), 200 if ready else 503


@app.get("/metrics")
def metrics():
    uptime = time.time() - START_TS
    payload: Dict[str, Any] = {"uptime_sec": int(uptime), "counters": dict(METRICS)}
    try:
        payload["faqs"] = faq_store.stats()
    except FaqStoreError:
        payload["faqs"] = None
    return jsonify(payload), 200


def _verify_webhook():
    mode = request.args.get("hub.mode")
    token = request.args.get("hub.verify_token")
    challenge = request.args.get("hub.challenge", "")
    if mode == "subscribe" and WEBHOOK_VERIFY_TOKEN and token == WEBHOOK_VERIFY_TOKEN:
        return challenge, 200
    METRICS["webhook_verify_failed_total"] += 1
    return "", 403


def _receive_webhook():
    """Responde 200 imediatamente; o processamento roda em segundo plano."""
    METRICS["webhook_received_total"] += 1
    payload = request.get_json(silent=True) or {}
    process_in_background(
        payload,
        store=faq_store,
        config=ranker_config,
        cache=preparation_cache,
    )
    return "", 200


app.add_url_rule("/webhook", "webhook_verify", _verify_webhook, methods=["GET"])
app.add_url_rule("/api/webhook", "api_webhook_verify", _verify_webhook, methods=["GET"])
app.add_url_rule("/webhook", "webhook_receive", _receive_webhook, methods=["POST"])
app.add_url_rule("/api/webhook", "api_webhook_receive", _receive_webhook, methods=["POST"])


@app.post("/faq/context")
def faq_context():
    """Mostra quais FAQs seriam injetados no prompt para um texto."""
    rid = str(uuid.uuid4())
    ts0 = time.time()

    data = request.get_json(silent=True) or {}
    text = (data.get("text") or data.get("question") or "").strip()
    if not text:
        METRICS["bad_request"] += 1
        return jsonify({"error": "O campo 'text' é obrigatório."}), 400

    METRICS["faq_context_requests_total"] += 1
    result = faq_context_for(faq_store, text, ranker_config, preparation_cache)
    if "store_error" in result:
        METRICS["faq_store_errors_total"] += 1
        return jsonify({"error": "Base de FAQ indisponível."}), 503

    ranked = [item.as_dict() for item in result["ranked"]]
    log = {
        "rid": rid,
        "took_ms": int((time.time() - ts0) * 1000),
        "text": text[:400],
        "hits": len(ranked),
    }
    print(json.dumps(log, ensure_ascii=False), flush=True)

    return jsonify({"context": result["context"], "ranked": ranked})


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
