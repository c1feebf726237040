import base64
import json

import pytest

from rag_chat_core.citations.correlator import CitationCorrelator
from rag_chat_core.domain.exceptions import BusinessError
from rag_chat_core.domain.models import ReferenceEntry, SourceDocument


class SettingsStub:
    response_separator = "__LLM_RESPONSE__"
    citation_trailer_label = "Sources: "
    knowledge_base_label = "Knowledge base {kb_id}"
    document_label = "Document {doc_id}"


def _entry(*doc_ids, chat_id=None):
    docs = [SourceDocument(id=d, text=f"text of {d}", name=None) for d in doc_ids]
    return ReferenceEntry(documents=docs, chat_id=chat_id)


def _turns(*contents):
    turns = []
    for i, content in enumerate(contents):
        turns.append({"id": f"u{i}", "role": "USER", "content": f"question {i}"})
        turns.append({"id": f"a{i}", "role": "ASSISTANT", "content": content})
    return turns


def test_batch_single_entry_goes_to_first_assistant_only():
    correlator = CitationCorrelator("kb-1", "Loans", cfg=SettingsStub())
    messages = correlator.correlate_history(_turns("one", "two", "three"), [_entry("d1", "d2")])
    assistants = [m for m in messages if m.role == "assistant"]
    assert len(assistants) == 3
    assert [c.ordinal_id for c in assistants[0].citations] == [1, 2]
    assert assistants[0].content == "one\n\nSources: [citation](1), [citation](2)"
    assert assistants[1].citations == []
    assert assistants[2].citations == []
    assert assistants[1].content == "two"
    assert assistants[2].content == "three"


def test_batch_positional_match():
    correlator = CitationCorrelator(cfg=SettingsStub())
    messages = correlator.correlate_history(
        _turns("one", "two"),
        [_entry("d1"), _entry("d2", "d3")],
    )
    assistants = [m for m in messages if m.role == "assistant"]
    assert assistants[0].citations[0].metadata["document_id"] == "d1"
    assert [c.metadata["document_id"] for c in assistants[1].citations] == ["d2", "d3"]


def test_batch_falls_back_to_first_non_empty_entry():
    correlator = CitationCorrelator(cfg=SettingsStub())
    messages = correlator.correlate_history(_turns("only"), [_entry(), _entry("d9")])
    assistant = messages[1]
    assert [c.metadata["document_id"] for c in assistant.citations] == ["d9"]


def test_batch_fallback_does_not_take_later_positional_entry():
    correlator = CitationCorrelator(cfg=SettingsStub())
    messages = correlator.correlate_history(_turns("zero", "one"), [_entry(), _entry("d1")])
    assert messages[1].citations == []
    assert messages[1].content == "zero"
    assert [c.metadata["document_id"] for c in messages[3].citations] == ["d1"]


def test_batch_fallback_skips_reserved_entries():
    correlator = CitationCorrelator(cfg=SettingsStub())
    messages = correlator.correlate_history(
        _turns("zero", "one", "two"),
        [_entry(), _entry("d1"), _entry("d2"), _entry("d3")],
    )
    # 位置 0 为空，兜底取未预留的 entries[3]
    assert [c.metadata["document_id"] for c in messages[1].citations] == ["d3"]
    assert [c.metadata["document_id"] for c in messages[3].citations] == ["d1"]
    assert [c.metadata["document_id"] for c in messages[5].citations] == ["d2"]


def test_batch_prefers_chat_id_match():
    correlator = CitationCorrelator(cfg=SettingsStub())
    entries = [_entry("d-for-a1", chat_id="a1"), _entry("d-for-a0", chat_id="a0")]
    messages = correlator.correlate_history(_turns("zero", "one"), entries)
    assert messages[1].citations[0].metadata["document_id"] == "d-for-a0"
    assert messages[3].citations[0].metadata["document_id"] == "d-for-a1"


def test_batch_user_messages_are_plain():
    correlator = CitationCorrelator(cfg=SettingsStub())
    messages = correlator.correlate_history(_turns("a [[Citation:1]]"), [])
    assert messages[0].role == "user"
    assert messages[0].content == "question 0"
    assert messages[1].content == "a [citation](1)"
    assert messages[1].citations == []


def test_batch_context_blob_message_does_not_claim_entries():
    blob = base64.b64encode(json.dumps({"context": [{"page_content": "ctx", "metadata": {}}]}).encode()).decode()
    correlator = CitationCorrelator(cfg=SettingsStub())
    messages = correlator.correlate_history(
        _turns(blob + "__LLM_RESPONSE__from blob", "plain"),
        [_entry("d1")],
    )
    assert messages[1].content == "from blob"
    assert [c.text for c in messages[1].citations] == ["ctx"]
    assert messages[1].trailer == ""
    assert messages[3].citations[0].metadata["document_id"] == "d1"


def test_citation_metadata_labels():
    correlator = CitationCorrelator("kb-7", None, cfg=SettingsStub())
    entry = ReferenceEntry(documents=[
        SourceDocument(id="d1", text="t1", name="manual.pdf", metadata={"page": 3}),
        SourceDocument(id="d2", text="t2"),
    ])
    citations = correlator.build_citations(entry)
    first, second = citations
    assert first.ordinal_id == 1 and second.ordinal_id == 2
    assert first.metadata["page"] == 3
    assert first.metadata["kb_id"] == "kb-7"
    assert first.metadata["knowledge_base_name"] == "Knowledge base kb-7"
    assert first.metadata["file_name"] == "manual.pdf"
    assert second.metadata["file_name"] == "Document d2"


def test_knowledge_base_from_document_metadata():
    correlator = CitationCorrelator(cfg=SettingsStub())
    entry = ReferenceEntry(documents=[
        SourceDocument(id="d1", text="t", metadata={"knowledgeBaseId": "kb-2", "knowledgeBaseName": "HR"}),
    ])
    meta = correlator.build_citations(entry)[0].metadata
    assert meta["kb_id"] == "kb-2"
    assert meta["knowledge_base_name"] == "HR"


def test_live_uses_last_entry():
    correlator = CitationCorrelator(cfg=SettingsStub())
    message = correlator.correlate_live("m1", "answer", [_entry("old"), _entry("new")])
    assert [c.metadata["document_id"] for c in message.citations] == ["new"]
    assert message.content == "answer\n\nSources: [citation](1)"
    assert message.body == "answer"


def test_live_without_references_is_byte_identical():
    correlator = CitationCorrelator(cfg=SettingsStub())
    for entries in ([], [_entry()]):
        message = correlator.correlate_live("m1", "plain answer\n", entries)
        assert message.content == "plain answer\n"
        assert message.citations == []
        assert message.trailer == ""


def test_trailer_is_not_renormalized():
    correlator = CitationCorrelator(cfg=SettingsStub())
    message = correlator.correlate_live("m1", "see [[Citation:1]]", [_entry("d1")])
    assert message.content == "see [citation](1)\n\nSources: [citation](1)"


def test_citations_attach_only_once():
    correlator = CitationCorrelator(cfg=SettingsStub())
    message = correlator.correlate_live("m1", "x", [_entry("d1")])
    with pytest.raises(BusinessError) as exc:
        message.attach_citations([])
    assert exc.value.code == "CITATIONS_ALREADY_ATTACHED"
    assert message.citations[0].ordinal_id == 1
