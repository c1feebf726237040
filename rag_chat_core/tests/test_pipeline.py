import asyncio

from rag_chat_core.streaming.accumulator import AnswerAccumulator
from rag_chat_core.streaming.pipeline import aassemble_answer, assemble_answer


STREAM = (
    'data: {"answer": "Hel"}\n\n'
    'data: {"answer": "lo"}\n\n'
    'data: {"answer": "lo"}\n\n'
    'data: {"answer": ", 世界"}\n\n'
    'data: {"answer": "[DONE]"}\n\n'
)


def test_single_chunk():
    result = assemble_answer([STREAM])
    assert result.answer == "Hello, 世界"
    assert result.terminated is True


def test_one_char_chunks_match_single_chunk():
    whole = assemble_answer([STREAM])
    split = assemble_answer(list(STREAM))
    assert split.answer == whole.answer


def test_one_byte_chunks_match_single_chunk():
    raw = STREAM.encode("utf-8")
    whole = assemble_answer([raw])
    split = assemble_answer([raw[i:i + 1] for i in range(len(raw))])
    assert whole.answer == "Hello, 世界"
    assert split.answer == whole.answer


def test_sentinel_is_never_appended():
    result = assemble_answer(['data: {"answer": "ok"}\n\ndata: {"answer": "[DONE]"}\n\n'])
    assert result.answer == "ok"
    assert "[DONE]" not in result.answer


def test_frames_after_sentinel_are_ignored():
    chunks = [
        'data: {"answer": "a"}\n\ndata: {"answer": "[DONE]"}\n\ndata: {"answer": "late"}\n\n',
        'data: {"answer": "never read"}\n\n',
    ]
    result = assemble_answer(chunks)
    assert result.answer == "a"


def test_unterminated_final_frame_is_flushed():
    result = assemble_answer(['data: {"answer": "x"}\n\ndata: {"answer": "y"}'])
    assert result.answer == "xy"
    assert result.terminated is False


def test_updates_are_published_per_append():
    seen = []
    assemble_answer([STREAM], on_update=seen.append)
    assert seen == ["Hel", "Hello", "Hello, 世界"]


def test_references_are_collected_from_events():
    stream = (
        'data: {"answer": "a", "reference": {"chatid": "c1", "reference": [{"chunkId": "k1", "text": "t1"}]}}\n\n'
        'data: {"answer": "b", "reference": {"chatid": "c1", "reference": [{"chunkId": "k1", "text": "t1"}]}}\n\n'
        'data: {"answer": "[DONE]"}\n\n'
    )
    result = assemble_answer([stream])
    assert result.answer == "ab"
    # 连续重复的引用只保留一份
    assert len(result.references) == 1
    assert result.references[0].documents[0].id == "k1"


def test_source_is_closed_after_terminal():
    state = {"closed": False, "consumed": 0}

    def source():
        try:
            for chunk in ['data: {"answer": "a"}\n\n', 'data: {"answer": "[DONE]"}\n\n', 'data: {"answer": "b"}\n\n']:
                state["consumed"] += 1
                yield chunk
        finally:
            state["closed"] = True

    result = assemble_answer(source())
    assert result.answer == "a"
    assert state["consumed"] == 2
    assert state["closed"] is True


def test_source_is_closed_on_error_and_partial_answer_kept():
    state = {"closed": False}
    acc = AnswerAccumulator()

    def source():
        try:
            yield 'data: {"answer": "partial"}\n\n'
            raise ConnectionResetError("peer reset")
        finally:
            state["closed"] = True

    try:
        assemble_answer(source(), accumulator=acc)
    except ConnectionResetError:
        pass
    else:
        raise AssertionError("expected ConnectionResetError")
    assert state["closed"] is True
    assert acc.text == "partial"


def test_async_assemble_matches_sync():
    raw = STREAM.encode("utf-8")

    async def source():
        for i in range(len(raw)):
            yield raw[i:i + 1]

    result = asyncio.run(aassemble_answer(source()))
    assert result.answer == assemble_answer([STREAM]).answer
    assert result.terminated is True


def test_async_source_is_closed_on_cancel():
    state = {"closed": False}

    async def source():
        try:
            yield 'data: {"answer": "a"}\n\n'
            await asyncio.sleep(10)
            yield 'data: {"answer": "b"}\n\n'
        finally:
            state["closed"] = True

    async def run():
        task = asyncio.ensure_future(aassemble_answer(source()))
        await asyncio.sleep(0.01)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(run())
    assert state["closed"] is True
