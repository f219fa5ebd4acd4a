import sqlite3

from app.models import AISettingsUpdate
from app.services.ai_assistant import (
    DISABLED_MESSAGE,
    FALLBACK_MESSAGE,
    TOO_LONG_MESSAGE,
    cache_key,
    estimate_cost,
    format_wait,
)


def _enable_fake_llm(monkeypatch, assistant, answer="Te recomiendo Snacks Charlitron 🌽", error=None):
    calls = []

    def fake_call_model(question, context):
        calls.append((question, context))
        if error:
            raise error
        return answer, (120, 30)

    monkeypatch.setattr(assistant, "client", object())
    monkeypatch.setattr(assistant, "llm_available", True)
    monkeypatch.setattr(assistant, "_call_model", fake_call_model)
    return calls


def test_welcome_message(client):
    payload = client.get("/chat/welcome").json()
    assert payload["message"].startswith("¡Hola!")
    assert payload["llm_configured"] is False


def test_faq_answer_then_cache(client, stores):
    first = client.post("/chat/ask", json={"question": "Hola, buenas tardes"}).json()
    assert first["ok"] is True
    assert first["sources_used"] == ["faq:hola"]
    assert first["record_id"] is not None

    second = client.post("/chat/ask", json={"question": "hola, buenas tardes!!", "session_id": "abc"}).json()
    assert second["sources_used"] == ["cache"]
    assert second["answer"] == first["answer"]
    assert second["session_id"] == "abc"

    record = stores.feedback.get_record(second["record_id"])
    assert record.sources_used == ["cache"]
    assert record.client_id == "testclient"
    assert record.was_useful is None


def test_model_answer_lists_context_providers(client, stores, monkeypatch):
    calls = _enable_fake_llm(monkeypatch, stores.assistant)
    response = client.post("/chat/ask", json={"question": "Busco elotes para una fiesta"}).json()
    assert response["ok"] is True
    assert response["answer"] == "Te recomiendo Snacks Charlitron 🌽"
    assert response["sources_used"] == ["prov_snacks", "prov_charlie", "prov_dj_norte"]

    context = calls[0][1]
    assert "San Luis Potosí" in context["cities"]
    assert {p["name"] for p in context["providers"]} == {"Snacks Charlitron", "Charlie Production", "DJ Norte Sonido"}

    record = stores.feedback.get_record(response["record_id"])
    assert record.tokens_input == 120
    assert record.tokens_output == 30
    assert record.cost_usd == estimate_cost(120, 30)


def test_model_failure_returns_fallback(client, stores, monkeypatch):
    _enable_fake_llm(monkeypatch, stores.assistant, error=RuntimeError("upstream down"))
    response = client.post("/chat/ask", json={"question": "Necesito un mariachi"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is False
    assert payload["answer"] == FALLBACK_MESSAGE
    assert stores.feedback.get_record(payload["record_id"]).response.startswith("Error:")


def test_llm_not_configured_returns_fallback(client):
    payload = client.post("/chat/ask", json={"question": "Necesito un mariachi"}).json()
    assert payload["ok"] is False
    assert payload["answer"] == FALLBACK_MESSAGE


def test_disabled_assistant_still_logs(client, stores, monkeypatch):
    calls = _enable_fake_llm(monkeypatch, stores.assistant)
    stores.feedback.update_settings(AISettingsUpdate(is_enabled=False))
    payload = client.post("/chat/ask", json={"question": "¿Tienen DJ?"}).json()
    assert payload["ok"] is False
    assert payload["answer"] == DISABLED_MESSAGE
    assert payload["record_id"] is not None
    assert stores.feedback.get_record(payload["record_id"]).question == "¿Tienen DJ?"
    assert calls == []


def test_rate_limit_per_minute(client, stores, monkeypatch):
    calls = _enable_fake_llm(monkeypatch, stores.assistant)
    client.post("/chat/ask", json={"question": "pregunta uno"})
    client.post("/chat/ask", json={"question": "pregunta dos"})
    limited = client.post("/chat/ask", json={"question": "pregunta tres"}).json()
    assert limited["ok"] is False
    assert limited["answer"] == "Has alcanzado el límite de preguntas. Inténtalo nuevamente en 1 minuto."
    assert limited["sources_used"] == ["rate_limited"]
    assert len(calls) == 2

    still_limited = client.post("/chat/ask", json={"question": "pregunta cuatro"}).json()
    assert still_limited["sources_used"] == ["rate_limited"]


def test_rate_limit_counts_per_client(stores, monkeypatch):
    _enable_fake_llm(monkeypatch, stores.assistant)
    assistant = stores.assistant
    assistant.ask_question("uno", client_id="1.1.1.1")
    assistant.ask_question("dos", client_id="1.1.1.1")
    assert assistant.ask_question("tres", client_id="1.1.1.1").ok is False
    assert assistant.ask_question("tres", client_id="2.2.2.2").ok is True


def test_question_too_long(client, stores):
    stores.feedback.update_settings(AISettingsUpdate(max_question_chars=10))
    payload = client.post("/chat/ask", json={"question": "quiero un mariachi para mi boda"}).json()
    assert payload["ok"] is False
    assert payload["answer"] == TOO_LONG_MESSAGE


def test_empty_question_rejected(client):
    assert client.post("/chat/ask", json={"question": "   "}).status_code == 400


def test_first_vote_wins(client, stores):
    asked = client.post("/chat/ask", json={"question": "¿Cuál es el costo?"}).json()
    record_id = asked["record_id"]

    first = client.post("/chat/feedback", json={"record_id": record_id, "useful": True, "comment": "Gracias"})
    assert first.status_code == 200
    assert first.json()["was_useful"] is True

    second = client.post("/chat/feedback", json={"record_id": record_id, "useful": False})
    assert second.status_code == 409

    record = stores.feedback.get_record(record_id)
    assert record.was_useful is True
    assert record.comment == "Gracias"
    assert record.voted_at

    assert client.post("/chat/feedback", json={"record_id": 999999, "useful": True}).status_code == 404


def test_logging_failure_does_not_break_answer(client, stores, monkeypatch):
    def broken_log_usage(**kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(stores.feedback, "log_usage", broken_log_usage)
    payload = client.post("/chat/ask", json={"question": "ayuda por favor"}).json()
    assert payload["ok"] is True
    assert payload["sources_used"] == ["faq:ayuda"]
    assert payload["record_id"] is None


def test_cache_key_and_wait_formatting():
    assert cache_key("  ¿Hola, QUÉ tal?  ") == "hola qu tal"
    assert len(cache_key("a" * 200)) == 50
    assert format_wait(1) == "1 minuto"
    assert format_wait(45) == "45 minutos"
    assert format_wait(60) == "60 minutos"
    assert format_wait(1440) == "24 horas"


def test_settings_failure_uses_defaults(client, stores, monkeypatch):
    def broken_load_settings():
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(stores.feedback, "load_settings", broken_load_settings)
    response = client.post("/chat/ask", json={"question": "hola"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["sources_used"] == ["faq:hola"]

    welcome = client.get("/chat/welcome")
    assert welcome.status_code == 200
    assert welcome.json()["message"].startswith("¡Hola!")


def test_rate_limit_lookup_failure_allows_question(client, stores, monkeypatch):
    calls = _enable_fake_llm(monkeypatch, stores.assistant)

    def broken_count_since(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(stores.feedback, "count_since", broken_count_since)
    for question in ("pregunta uno", "pregunta dos", "pregunta tres"):
        payload = client.post("/chat/ask", json={"question": question}).json()
        assert payload["ok"] is True
    assert len(calls) == 3
