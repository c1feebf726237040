"""流式回答组装。

把网络层交付的块（bytes 或 str，同步或异步迭代器）依次送过
FrameDecoder -> parse_frame -> AnswerAccumulator，得到完整回答和流中附带的引用。

- 块严格按到达顺序处理，同一块内的帧按缓冲区顺序处理。
- bytes 块用增量 UTF-8 解码，多字节字符被拆到两个块里也不会乱码。
- 收到结束标记后，当前块里剩余的帧照常取出但不再并入回答，之后不再读取新块。
- 无论正常结束还是异常退出，都会关闭块来源（close/aclose），避免连接泄漏。
"""

import codecs
import logging
from typing import Any, AsyncIterable, Iterable, List, Optional, Union

from rag_chat_core.config.settings import settings
from rag_chat_core.domain.models import ReferenceEntry, StreamResult
from rag_chat_core.infrastructure.logging.logger import logger
from rag_chat_core.references.resolver import resolve_references
from rag_chat_core.streaming.accumulator import AnswerAccumulator, AnswerListener
from rag_chat_core.streaming.event_parser import parse_frame
from rag_chat_core.streaming.frame_decoder import FrameDecoder

Chunk = Union[str, bytes]


class StreamAssembler:
    """单次流式会话的组装状态。"""

    def __init__(
        self,
        accumulator: Optional[AnswerAccumulator] = None,
        done_sentinel: Optional[str] = None,
        encoding: str = "utf-8",
    ) -> None:
        self.accumulator = accumulator or AnswerAccumulator()
        self.references: List[ReferenceEntry] = []
        self.terminated = False
        self._done_sentinel = done_sentinel or settings.done_sentinel
        self._frames = FrameDecoder()
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._ignored_frames = 0

    def feed(self, chunk: Chunk) -> None:
        if isinstance(chunk, (bytes, bytearray)):
            text = self._text_decoder.decode(bytes(chunk))
        else:
            text = chunk
        for frame in self._frames.feed(text):
            self._handle_frame(frame)

    def close(self) -> StreamResult:
        """流结束：取出残留缓冲区作为最后一帧，返回汇总结果。"""

        tail = self._text_decoder.decode(b"", final=True)
        if tail:
            for frame in self._frames.feed(tail):
                self._handle_frame(frame)
        last = self._frames.flush()
        if last is not None:
            self._handle_frame(last)
        self.accumulator.finish()
        if self._ignored_frames:
            logger.log(
                logging.INFO,
                "Ignored frames after terminal sentinel",
                extra={"extra": {"count": self._ignored_frames}},
            )
        return StreamResult(
            answer=self.accumulator.text,
            terminated=self.terminated,
            references=list(self.references),
        )

    def _handle_frame(self, frame: str) -> None:
        delta = parse_frame(frame, self._done_sentinel)
        if delta is None:
            return
        if self.terminated:
            self._ignored_frames += 1
            return
        if delta.reference is not None:
            self._collect_references(delta.reference)
        if delta.is_terminal:
            self.terminated = True
            self.accumulator.finish()
            return
        if delta.answer_fragment:
            self.accumulator.append(delta.answer_fragment)

    def _collect_references(self, raw: Any) -> None:
        # 后端每个回答块都会带上同一份引用，连续重复的只保留一份
        for entry in resolve_references(raw):
            if self.references and self.references[-1] == entry:
                continue
            self.references.append(entry)


def assemble_answer(
    chunks: Iterable[Chunk],
    on_update: Optional[AnswerListener] = None,
    accumulator: Optional[AnswerAccumulator] = None,
    done_sentinel: Optional[str] = None,
) -> StreamResult:
    """同步驱动：消费 chunks 直到结束标记或迭代器耗尽。"""

    assembler = StreamAssembler(accumulator=accumulator, done_sentinel=done_sentinel)
    unsubscribe = assembler.accumulator.subscribe(on_update) if on_update else None
    try:
        for chunk in chunks:
            assembler.feed(chunk)
            if assembler.terminated:
                break
        return assembler.close()
    finally:
        if unsubscribe:
            unsubscribe()
        close = getattr(chunks, "close", None)
        if callable(close):
            close()


async def aassemble_answer(
    chunks: AsyncIterable[Chunk],
    on_update: Optional[AnswerListener] = None,
    accumulator: Optional[AnswerAccumulator] = None,
    done_sentinel: Optional[str] = None,
) -> StreamResult:
    """异步驱动：每次 await 下一块是唯一的挂起点。"""

    assembler = StreamAssembler(accumulator=accumulator, done_sentinel=done_sentinel)
    unsubscribe = assembler.accumulator.subscribe(on_update) if on_update else None
    try:
        async for chunk in chunks:
            assembler.feed(chunk)
            if assembler.terminated:
                break
        return assembler.close()
    finally:
        if unsubscribe:
            unsubscribe()
        aclose = getattr(chunks, "aclose", None)
        if callable(aclose):
            await aclose()
