"""引用匹配与消息组装。

两种模式共用一套引用构造逻辑：

- 实时模式：一轮流式回答刚结束，取解析出的最后一个 ReferenceEntry。
- 批量模式：加载历史消息时，ReferenceEntry 数量不一定等于助手消息数量，
  需要按位置匹配并带兜底查找。

所有助手消息都经过 finalize_assistant_message 统一组装：先规范化模型正文的
引用标记，再绑定引用并追加尾注。尾注本身已经是规范格式，不再经过规范化。
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import uuid4

from rag_chat_core.config.settings import settings
from rag_chat_core.domain.models import (
    CitationRecord,
    ConversationMessage,
    ReferenceEntry,
    Role,
)
from rag_chat_core.infrastructure.logging.logger import logger
from rag_chat_core.markers.normalizer import decode_context_message, has_context_blob, normalize_markers


class CitationCorrelator:
    """引用匹配器。

    Args:
        knowledge_base_id: 会话所属知识库 id（后端 knowledgebaseId）。
        knowledge_base_name: 知识库名称，缺失时用 knowledge_base_label 模板生成。
        cfg: 配置对象，默认取全局 settings。
    """

    def __init__(
        self,
        knowledge_base_id: Optional[str] = None,
        knowledge_base_name: Optional[str] = None,
        cfg=settings,
    ):
        self._kb_id = knowledge_base_id
        self._kb_name = knowledge_base_name
        self._settings = cfg

    # ---- 引用条目选择 ----

    @staticmethod
    def select_live_entry(entries: Sequence[ReferenceEntry]) -> Optional[ReferenceEntry]:
        """实时模式只有一条相关引用：取最后一个。"""

        return entries[-1] if entries else None

    @staticmethod
    def select_batch_entry(
        entries: Sequence[ReferenceEntry],
        position: int,
        message_id: Optional[str] = None,
        claimed: Optional[Set[int]] = None,
        reserved: Optional[Set[int]] = None,
    ) -> Optional[int]:
        """为第 position 条助手消息挑选引用条目，返回条目下标。

        1. 条目带 chat_id 且等于消息 id 时优先精确匹配；
        2. 同位置条目存在、非空，且没有被 chat_id 精确匹配占走；
        3. 否则取第一个非空、未被占用、也没有预留给其他位置的条目。
        都没有则返回 None。

        reserved 是留给各自位置的条目下标，兜底查找不能拿走。
        """

        taken = claimed or set()
        held = reserved or set()
        if message_id:
            for idx, entry in enumerate(entries):
                if idx not in taken and entry.chat_id == message_id and not entry.is_empty:
                    return idx
        if 0 <= position < len(entries) and position not in taken and not entries[position].is_empty:
            return position
        for idx, entry in enumerate(entries):
            if idx not in taken and idx not in held and not entry.is_empty:
                return idx
        return None

    def _reserve_positions(
        self,
        turns: Sequence[Dict[str, Any]],
        entries: Sequence[ReferenceEntry],
    ) -> Set[int]:
        """先按位置预留：第 i 条参与匹配的助手消息拥有 entries[i]（非空时）。"""

        reserved: Set[int] = set()
        position = 0
        for turn in turns:
            if normalize_role(turn.get("role")) != "assistant":
                continue
            content = turn.get("content") or ""
            if (
                not has_context_blob(content, self._settings.response_separator)
                and position < len(entries)
                and not entries[position].is_empty
            ):
                reserved.add(position)
            position += 1
        return reserved

    # ---- 引用构造 ----

    def build_citations(self, entry: Optional[ReferenceEntry]) -> List[CitationRecord]:
        """按文档在条目中的位置分配 1 起始的 ordinal_id，并补齐展示字段。"""

        if entry is None or entry.is_empty:
            return []
        citations: List[CitationRecord] = []
        for ordinal, doc in enumerate(entry.documents, start=1):
            doc_meta = dict(doc.metadata)
            kb_id = self._kb_id or doc_meta.get("knowledgeBaseId") or doc_meta.get("kb_id")
            kb_name = self._kb_name or doc_meta.get("knowledgeBaseName")
            metadata: Dict[str, Any] = {
                **doc_meta,
                "document_id": doc.id,
                "kb_id": kb_id,
                "knowledge_base_name": kb_name or self._settings.knowledge_base_label.format(kb_id=kb_id or "").strip(),
                "file_name": doc.name or self._settings.document_label.format(doc_id=doc.id),
            }
            citations.append(CitationRecord(ordinal_id=ordinal, text=doc.text, metadata=metadata))
        return citations

    def build_trailer(self, citations: Sequence[CitationRecord]) -> str:
        """引用尾注：只在有引用时生成，例如 ``\\n\\nSources: [citation](1), [citation](2)``。"""

        if not citations:
            return ""
        markers = ", ".join(f"[citation]({c.ordinal_id})" for c in citations)
        return f"\n\n{self._settings.citation_trailer_label}{markers}"

    # ---- 消息组装 ----

    def finalize_assistant_message(
        self,
        message_id: str,
        raw_content: str,
        entry: Optional[ReferenceEntry],
    ) -> ConversationMessage:
        """把一条助手原文组装成最终消息。

        含 base64 上下文分隔符时走上下文解码路径，忽略 entry；
        否则规范化正文并按 entry 绑定引用和尾注。
        """

        content = raw_content or ""
        if has_context_blob(content, self._settings.response_separator):
            visible, citations = decode_context_message(content, self._settings.response_separator)
            message = ConversationMessage(id=message_id, role="assistant", content=normalize_markers(visible))
            message.attach_citations(citations)
            return message

        citations = self.build_citations(entry)
        message = ConversationMessage(id=message_id, role="assistant", content=normalize_markers(content))
        message.attach_citations(citations, self.build_trailer(citations))
        return message

    def correlate_live(
        self,
        message_id: str,
        raw_content: str,
        entries: Sequence[ReferenceEntry],
    ) -> ConversationMessage:
        entry = self.select_live_entry(entries)
        if entry is None or entry.is_empty:
            logger.log(
                logging.INFO,
                "No reference for live answer",
                extra={"extra": {"message_id": message_id, "entries": len(entries)}},
            )
        return self.finalize_assistant_message(message_id, raw_content, entry)

    def correlate_history(
        self,
        turns: Sequence[Dict[str, Any]],
        entries: Sequence[ReferenceEntry],
    ) -> List[ConversationMessage]:
        """批量模式：把历史轮次转换成消息，助手消息按序号匹配引用。"""

        messages: List[ConversationMessage] = []
        claimed: Set[int] = set()
        reserved = self._reserve_positions(turns, entries)
        assistant_position = 0
        matched = 0
        for index, turn in enumerate(turns):
            message_id = str(turn.get("id") or f"msg-{index}")
            role = normalize_role(turn.get("role"))
            content = turn.get("content") or ""
            if role != "assistant":
                messages.append(ConversationMessage(id=message_id, role=role, content=content))
                continue

            entry_index = None
            if not has_context_blob(content, self._settings.response_separator):
                entry_index = self.select_batch_entry(
                    entries, assistant_position, message_id, claimed, reserved - {assistant_position}
                )
            entry = None
            if entry_index is not None:
                claimed.add(entry_index)
                entry = entries[entry_index]
                matched += 1
            messages.append(self.finalize_assistant_message(message_id, content, entry))
            assistant_position += 1

        logger.log(
            logging.INFO,
            "Correlated history references",
            extra={"extra": {
                "messages": len(messages),
                "assistant_messages": assistant_position,
                "reference_entries": len(entries),
                "matched": matched,
            }},
        )
        return messages


def normalize_role(raw: Any) -> Role:
    """后端角色是 USER/ASSISTANT，统一为小写；未知角色按 user 处理。"""

    return "assistant" if str(raw or "").lower() == "assistant" else "user"


def new_message_id() -> str:
    return f"m-{uuid4().hex}"
