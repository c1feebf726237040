"""RAG 聊天会话。

负责一次会话内的轮次调度：
- 流式提问（同步 ask / 异步 aask）：同一时间只允许一轮在途，回答边到边推给订阅者，
  流结束后再做引用匹配和标记规范化，生成最终的助手消息。
- 非流式提问 ask_blocking：后端一次性返回 message/reference。
- 历史加载 load_history：批量匹配引用。

传输失败会原样抛给调用方，在途标记一定会被释放，已收到的部分回答保留在 partial_answer。
"""

import logging
import time
from typing import Any, Dict, List, Optional
from uuid import uuid4

from rag_chat_core.citations.correlator import CitationCorrelator, new_message_id, normalize_role
from rag_chat_core.client.rag_client import RagApiClient
from rag_chat_core.config.settings import settings
from rag_chat_core.domain.exceptions import BusinessError, TurnInFlightError, ValidationError
from rag_chat_core.domain.models import ConversationMessage, StreamResult
from rag_chat_core.infrastructure.logging.logger import log_event
from rag_chat_core.references.resolver import resolve_messages, resolve_references
from rag_chat_core.streaming.accumulator import AnswerAccumulator, AnswerListener


class ChatSession:
    def __init__(
        self,
        conversation_id: Optional[str] = None,
        client: Optional[RagApiClient] = None,
        knowledge_base_id: Optional[str] = None,
        knowledge_base_name: Optional[str] = None,
        cfg=settings,
    ):
        self.conversation_id = conversation_id
        self.messages: List[ConversationMessage] = []
        self.knowledge_base_id = knowledge_base_id
        self.knowledge_base_name = knowledge_base_name
        self._settings = cfg
        self._client = client or RagApiClient(cfg)
        self._accumulator = AnswerAccumulator()
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def partial_answer(self) -> str:
        """当前（或上一轮中断时）已累积的回答文本。"""

        return self._accumulator.text

    def subscribe(self, listener: AnswerListener):
        """订阅回答增量，每次追加后收到完整的当前回答。返回取消订阅函数。"""

        return self._accumulator.subscribe(listener)

    # ---- 流式 ----

    def ask(self, question: str) -> ConversationMessage:
        """同步流式提问，返回组装完成的助手消息。"""

        log_ctx = self._begin_turn(question)
        start_time = time.time()
        try:
            result = self._client.stream_answer(
                question,
                self.conversation_id,
                accumulator=self._accumulator,
            )
            return self._complete_turn(result, log_ctx, start_time)
        except BusinessError as e:
            self._fail_turn(e, log_ctx)
            raise
        finally:
            self._in_flight = False

    async def aask(self, question: str) -> ConversationMessage:
        """异步流式提问。"""

        log_ctx = self._begin_turn(question)
        start_time = time.time()
        try:
            result = await self._client.astream_answer(
                question,
                self.conversation_id,
                accumulator=self._accumulator,
            )
            return self._complete_turn(result, log_ctx, start_time)
        except BusinessError as e:
            self._fail_turn(e, log_ctx)
            raise
        finally:
            self._in_flight = False

    # ---- 非流式 ----

    def ask_blocking(self, question: str) -> Optional[ConversationMessage]:
        """非流式提问：取返回的最后一条助手消息，并用最后一个引用条目匹配。"""

        log_ctx = self._begin_turn(question)
        try:
            data = self._client.send_message(question, self.conversation_id)
            turns = resolve_messages(data.get("message"))
            last = turns[-1] if turns else None
            if last is None or normalize_role(last.get("role")) != "assistant":
                log_event(logging.WARNING, "No assistant message in response", log_ctx, turns=len(turns))
                return None
            entries = resolve_references(data.get("reference"))
            message = self._correlator(data).correlate_live(
                str(last.get("id") or new_message_id()),
                last.get("content") or "",
                entries,
            )
            self.messages.append(message)
            log_event(
                logging.INFO,
                "Completed blocking turn",
                log_ctx,
                assistant_message_id=message.id,
                citations=len(message.citations),
            )
            return message
        except BusinessError as e:
            self._fail_turn(e, log_ctx)
            raise
        finally:
            self._in_flight = False

    # ---- 历史 ----

    def load_history(self) -> List[ConversationMessage]:
        """加载历史消息并批量匹配引用，结果替换当前消息列表。"""

        if self._in_flight:
            raise TurnInFlightError(conversation_id=self.conversation_id)
        if not self.conversation_id:
            raise ValidationError(code="MISSING_CONVERSATION_ID", message="conversation_id is required")
        log_ctx: Dict[str, Any] = {"conversation_id": self.conversation_id}
        try:
            data = self._client.fetch_history(self.conversation_id)
        except BusinessError as e:
            log_event(logging.ERROR, "Failed to load history", log_ctx, code=e.code, error=e.message)
            raise
        turns = resolve_messages(data.get("message"))
        entries = resolve_references(data.get("reference"))
        self.messages = self._correlator(data).correlate_history(turns, entries)
        log_event(logging.INFO, "Loaded history", log_ctx, messages=len(self.messages))
        return self.messages

    # ---- 辅助方法 ----

    def _begin_turn(self, question: str) -> Dict[str, Any]:
        if self._in_flight:
            raise TurnInFlightError(conversation_id=self.conversation_id)
        if not question or not question.strip():
            raise ValidationError(code="EMPTY_QUESTION", message="question must not be empty")
        self._in_flight = True
        self._accumulator.reset()
        user_message = ConversationMessage(id=new_message_id(), role="user", content=question.strip())
        self.messages.append(user_message)
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": self.conversation_id,
            "user_message_id": user_message.id,
        }
        log_event(logging.INFO, "Started chat turn", log_ctx)
        return log_ctx

    def _complete_turn(self, result: StreamResult, log_ctx: Dict[str, Any], start_time: float) -> ConversationMessage:
        if not result.terminated:
            log_event(logging.WARNING, "Stream closed before terminal sentinel", log_ctx)
        message = self._correlator().correlate_live(new_message_id(), result.answer, result.references)
        self.messages.append(message)
        log_event(
            logging.INFO,
            "Completed chat turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            assistant_message_id=message.id,
            answer_length=len(result.answer),
            citations=len(message.citations),
        )
        return message

    def _fail_turn(self, error: BusinessError, log_ctx: Dict[str, Any]) -> None:
        log_event(
            logging.ERROR,
            "Chat turn failed",
            log_ctx,
            code=error.code,
            error=error.message,
            partial_length=len(self._accumulator.text),
        )

    def _correlator(self, data: Optional[Dict[str, Any]] = None) -> CitationCorrelator:
        if data:
            self.knowledge_base_id = data.get("knowledgebaseId") or self.knowledge_base_id
            self.knowledge_base_name = data.get("knowledgebaseName") or self.knowledge_base_name
        return CitationCorrelator(self.knowledge_base_id, self.knowledge_base_name, cfg=self._settings)
