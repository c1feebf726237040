"""SSE 流式回答组装：帧切分、事件解析、回答累加。"""

from rag_chat_core.streaming.accumulator import AnswerAccumulator
from rag_chat_core.streaming.event_parser import parse_frame
from rag_chat_core.streaming.frame_decoder import FrameDecoder
from rag_chat_core.streaming.pipeline import StreamAssembler, aassemble_answer, assemble_answer

__all__ = [
    "AnswerAccumulator",
    "FrameDecoder",
    "StreamAssembler",
    "aassemble_answer",
    "assemble_answer",
    "parse_frame",
]
