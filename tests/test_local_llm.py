import pytest

from meadowloop.local_llm import LocalLLMError, build_chat_payload, call_ollama_chat, resolve_base_url


@pytest.mark.asyncio
async def test_call_ollama_chat_builds_payload(monkeypatch):
    captured: dict[str, object] = {}

    def fake_request(payload, base_url, timeout):
        captured["payload"] = payload
        captured["base_url"] = base_url
        captured["timeout"] = timeout
        return '{"content":"ok"}'

    monkeypatch.setattr("meadowloop.local_llm._perform_ollama_request", fake_request)

    result = await call_ollama_chat(
        system_prompt="System context",
        user_prompt="User payload",
        llm_model="llama3.1",
        base_url="http://localhost:11434/",
        timeout=30,
    )

    assert result == '{"content":"ok"}'
    payload = captured["payload"]
    assert payload["model"] == "llama3.1"
    assert payload["format"] == "json"
    assert payload["stream"] is False
    assert payload["messages"][0] == {"role": "system", "content": "System context"}
    assert payload["messages"][1] == {"role": "user", "content": "User payload"}
    assert captured["base_url"] == "http://localhost:11434"
    assert captured["timeout"] == 30


def test_payload_uses_response_schema_as_format():
    schema = {"type": "object", "properties": {"action": {"type": "string"}}}

    payload = build_chat_payload(
        system_prompt="  ",
        user_prompt="What do you do?",
        llm_model="llama3.1",
        response_schema=schema,
        temperature=0.2,
    )

    assert payload["format"] == schema
    assert payload["options"] == {"temperature": 0.2}
    assert payload["messages"] == [{"role": "user", "content": "What do you do?"}]


def test_base_url_falls_back_to_environment(monkeypatch):
    monkeypatch.delenv("OLLAMA_BASE_URL", raising=False)
    monkeypatch.setenv("LOCAL_LLM_BASE_URL", "http://gpu-box:11434/")

    assert resolve_base_url() == "http://gpu-box:11434"
    assert resolve_base_url("http://other:1") == "http://other:1"


@pytest.mark.asyncio
async def test_call_ollama_chat_rejects_empty_prompt(monkeypatch):
    def fail_request(*args):
        raise AssertionError("request should not be sent")

    monkeypatch.setattr("meadowloop.local_llm._perform_ollama_request", fail_request)

    with pytest.raises(LocalLLMError):
        await call_ollama_chat(system_prompt="System", user_prompt="   ", llm_model="llama3.1")
