import json

from rag_chat_core.api import service
from rag_chat_core.streaming.pipeline import assemble_answer


class FakeClient:
    name = "fake"

    def stream_answer(self, question, conversation_id=None, on_update=None, accumulator=None):
        chunks = ['data: {"answer": "hi"}\n\ndata: {"answer": " there"}\n\ndata: {"answer": "[DONE]"}\n\n']
        return assemble_answer(chunks, on_update=on_update, accumulator=accumulator)

    def fetch_history(self, conversation_id):
        return {
            "message": json.dumps([
                {"id": "u1", "role": "USER", "content": "q"},
                {"id": "a1", "role": "ASSISTANT", "content": "a [Citation:1]"},
            ]),
            "reference": json.dumps([{"documents": [{"id": "d1", "text": "src"}]}]),
        }


def _reset(monkeypatch):
    monkeypatch.setattr(service, "_client", FakeClient())
    monkeypatch.setattr(service, "_sessions", {})


def test_run_rag_chat(monkeypatch):
    _reset(monkeypatch)
    updates = []
    result = service.run_rag_chat("hello", "conv-1", on_update=updates.append)
    assert result["conversation_id"] == "conv-1"
    assert result["assistant_message"]["content"] == "hi there"
    assert result["assistant_message"]["citations"] == []
    assert updates == ["hi", "hi there"]
    # 同一会话复用同一个 session
    assert service.get_session("conv-1") is service.get_session("conv-1")


def test_get_conversation_messages(monkeypatch):
    _reset(monkeypatch)
    messages = service.get_conversation_messages("conv-2")
    assert messages[0] == {"id": "u1", "role": "user", "content": "q", "citations": []}
    assistant = messages[1]
    assert assistant["content"].startswith("a [citation](1)")
    assert assistant["citations"][0]["id"] == 1
    assert assistant["citations"][0]["text"] == "src"


def test_drop_session(monkeypatch):
    _reset(monkeypatch)
    first = service.get_session("conv-3")
    assert service.drop_session("conv-3") is True
    assert service.drop_session("conv-3") is False
    assert service.get_session("conv-3") is not first


def test_drop_session_keeps_in_flight_session(monkeypatch):
    _reset(monkeypatch)
    session = service.get_session("conv-4")
    monkeypatch.setattr(session, "_in_flight", True)
    assert service.drop_session("conv-4") is False
    assert service.get_session("conv-4") is session
