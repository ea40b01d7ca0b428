import threading
import time

import fakeredis
import pytest

import conversation_store
import message_handler
from faq_store import FaqStore, FaqStoreError
from llm_client import LLMError


FAQS_YAML = """
faqs:
  - id: 1
    question: "Como pagar?;Formas de pagamento"
    answer: "Aceitamos Pix e cartão."
  - id: 2
    question: "Onde fica a loja?"
    answer: "Rua das Flores, 120."
"""


def _payload(text="quais formas de pagamento aceitam?", msg_type="text", msg_id="wamid.1"):
    msg = {"from": "5511999", "id": msg_id, "type": msg_type}
    if text is not None:
        msg["text"] = {"body": text}
    return {
        "entry": [{
            "changes": [{
                "value": {
                    "contacts": [{"profile": {"name": "  Maria  "}}],
                    "messages": [msg],
                }
            }]
        }]
    }


@pytest.fixture
def store(tmp_path):
    path = tmp_path / "faqs.yml"
    path.write_text(FAQS_YAML, encoding="utf-8")
    return FaqStore(str(path))


@pytest.fixture
def fake_redis(monkeypatch):
    conversation_store.reset_client()
    fake = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(conversation_store, "_get_client", lambda: fake)
    return fake


@pytest.fixture
def collaborators(mocker):
    return {
        "send_text": mocker.patch("message_handler.send_text"),
        "typing": mocker.patch("message_handler.send_typing_indicator"),
        "reply": mocker.patch("message_handler.generate_reply", return_value="Pix ou cartão."),
        "log": mocker.patch("message_handler.log_event"),
    }


def test_extract_inbound_reads_first_message():
    inbound = message_handler.extract_inbound(_payload())
    assert inbound.wa_id == "5511999"
    assert inbound.wa_message_id == "wamid.1"
    assert inbound.msg_type == "text"
    assert inbound.text == "quais formas de pagamento aceitam?"
    assert inbound.profile_name == "Maria"


@pytest.mark.parametrize("payload", [None, {}, {"entry": []}, {"entry": [{"changes": [{"value": {}}]}]}])
def test_extract_inbound_ignores_payloads_without_messages(payload):
    assert message_handler.extract_inbound(payload) is None


def test_text_message_is_answered_with_faq_context(store, fake_redis, collaborators):
    sleeps = []

    result = message_handler.handle_webhook_payload(_payload(), store=store, sleep=sleeps.append)

    assert result["status"] == "replied"
    assert result["faq_hits"] == 1
    history, context = collaborators["reply"].call_args.args
    assert history == [{"role": "user", "content": "quais formas de pagamento aceitam?"}]
    assert context.startswith("1. Pergunta: Como pagar?;Formas de pagamento")
    assert "Variação relevante: Formas de pagamento" in context
    collaborators["typing"].assert_any_call("wamid.1")
    collaborators["send_text"].assert_called_once_with("5511999", "Pix ou cartão.")
    assert len(sleeps) == 1 and sleeps[0] > 0
    assert conversation_store.load_history("5511999")[-1] == {"role": "assistant", "content": "Pix ou cartão."}
    event, fields = collaborators["log"].call_args.args
    assert event == "webhook_reply"
    assert fields["faq_hits"] == 1


def test_history_includes_previous_turns(store, fake_redis, collaborators):
    conversation_store.append_message("5511999", "user", "oi")
    conversation_store.append_message("5511999", "assistant", "Olá!")

    message_handler.handle_webhook_payload(_payload(), store=store, sleep=lambda s: None)

    history = collaborators["reply"].call_args.args[0]
    assert [h["content"] for h in history] == ["oi", "Olá!", "quais formas de pagamento aceitam?"]


def test_duplicate_message_is_ignored(store, fake_redis, collaborators):
    message_handler.handle_webhook_payload(_payload(), store=store, sleep=lambda s: None)
    result = message_handler.handle_webhook_payload(_payload(), store=store, sleep=lambda s: None)

    assert result == {"status": "duplicate"}
    assert collaborators["reply"].call_count == 1


def test_non_text_message_gets_fallback(store, fake_redis, collaborators):
    result = message_handler.handle_webhook_payload(
        _payload(text=None, msg_type="image"), store=store, sleep=lambda s: None
    )

    assert result["status"] == "non_text"
    collaborators["send_text"].assert_called_once_with("5511999", message_handler.NON_TEXT_REPLY)
    collaborators["reply"].assert_not_called()
    assert conversation_store.load_history("5511999")[0] == {"role": "user", "content": "[image]"}


def test_empty_text_is_ignored(store, fake_redis, collaborators):
    result = message_handler.handle_webhook_payload(_payload(text=""), store=store, sleep=lambda s: None)
    assert result == {"status": "ignored"}
    collaborators["send_text"].assert_not_called()


def test_store_failure_falls_back_to_no_context(fake_redis, collaborators, mocker):
    broken = mocker.Mock(spec=FaqStore)
    broken.list_active_faqs.side_effect = FaqStoreError("arquivo sumiu")

    result = message_handler.handle_webhook_payload(_payload(), store=broken, sleep=lambda s: None)

    assert result["status"] == "replied"
    assert collaborators["reply"].call_args.args[1] == ""
    assert collaborators["log"].call_args.args[1]["faq_store_error"] == "arquivo sumiu"


def test_llm_failure_sends_apology(store, fake_redis, collaborators):
    collaborators["reply"].side_effect = LLMError("timeout")

    result = message_handler.handle_webhook_payload(_payload(), store=store, sleep=lambda s: None)

    assert result["reply"] == message_handler.ERROR_REPLY
    collaborators["send_text"].assert_called_once_with("5511999", message_handler.ERROR_REPLY)


def test_works_without_redis(store, monkeypatch, collaborators):
    conversation_store.reset_client()
    monkeypatch.delenv("REDIS_URL", raising=False)

    message_handler.handle_webhook_payload(_payload(), store=store, sleep=lambda s: None)

    history = collaborators["reply"].call_args.args[0]
    assert history == [{"role": "user", "content": "quais formas de pagamento aceitam?"}]


def test_faq_context_for_reports_active_count(store):
    result = message_handler.faq_context_for(store, "onde fica a loja?")
    assert result["active"] == 2
    assert result["ranked"][0].matched_variant == "Onde fica a loja?"


def test_background_processing_logs_send_failures(store, fake_redis, collaborators):
    collaborators["send_text"].side_effect = message_handler.WhatsAppError("HTTP 401")

    worker = message_handler.process_in_background(_payload(), store=store, sleep=lambda s: None)
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert collaborators["log"].call_args.args[0] == "webhook_error"


def test_undecodable_faq_file_falls_back_to_no_context(tmp_path, fake_redis, collaborators):
    path = tmp_path / "faqs.yml"
    path.write_bytes("faqs:\n  - question: \"Promoção?\"\n    answer: \"Não.\"\n".encode("latin-1"))

    result = message_handler.handle_webhook_payload(_payload(), store=FaqStore(str(path)), sleep=lambda s: None)

    assert result["status"] == "replied"
    assert collaborators["reply"].call_args.args[1] == ""
    assert collaborators["log"].call_args.args[1]["faq_store_error"]


def test_unexpected_store_error_falls_back_to_no_context(mocker):
    broken = mocker.Mock(spec=FaqStore)
    broken.list_active_faqs.side_effect = ValueError("boom")

    result = message_handler.faq_context_for(broken, "oi")

    assert result == {"context": "", "ranked": [], "store_error": "boom"}


def test_unexpected_reply_error_sends_apology(store, fake_redis, collaborators):
    collaborators["reply"].side_effect = RuntimeError("resposta inesperada")

    result = message_handler.handle_webhook_payload(_payload(), store=store, sleep=lambda s: None)

    assert result["reply"] == message_handler.ERROR_REPLY
    collaborators["send_text"].assert_called_once_with("5511999", message_handler.ERROR_REPLY)
    assert collaborators["log"].call_args.args[1]["llm_error"] == "resposta inesperada"


def test_typing_keeper_stops_before_reply_is_sent(store, fake_redis, collaborators, monkeypatch):
    monkeypatch.setattr(message_handler, "TYPING_REFRESH_SECONDS", 0.01)
    collaborators["reply"].side_effect = lambda *args: time.sleep(0.05) or "Pix ou cartão."
    before = {t.ident for t in threading.enumerate()}

    message_handler.handle_webhook_payload(_payload(), store=store, sleep=lambda s: None)

    keepers = [t for t in threading.enumerate() if t.ident not in before]
    assert keepers == []
    calls = collaborators["typing"].call_count
    time.sleep(0.05)
    assert collaborators["typing"].call_count == calls
