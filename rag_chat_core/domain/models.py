"""统一的对话、引用与流式数据模型。

本模块定义了流式组装与引用解析各环节共享的标准数据结构：

- ContentDelta: 单个 SSE 帧解析出的增量（回答片段 / 结束标记）。
- SourceDocument / ReferenceEntry: 后端返回的引用文档，一轮助手回答对应一个 ReferenceEntry。
- CitationRecord: 绑定到某条消息上的引用，ordinal_id 从 1 开始。
- ConversationMessage: 交给渲染层的最终消息。
- StreamResult: 一次流式回答结束后的汇总。

各环节只依赖这些模型，并负责在后端 JSON 和模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from rag_chat_core.domain.exceptions import BusinessError


# 对话消息角色（后端返回 USER/ASSISTANT，解析时统一转小写）
Role = Literal["user", "assistant"]

# 后端扁平引用结构中需要并入 metadata 的字段
_FLAT_DOCUMENT_FIELDS = (
    "documentId",
    "documentName",
    "score",
    "pageRange",
    "contentType",
    "documentUrl",
)


@dataclass
class ContentDelta:
    """一个 SSE 帧的解析结果。

    - answer_fragment: 本帧携带的回答片段，没有则为 None。
    - is_terminal: 是否为结束标记帧（"[DONE]"），结束帧本身不携带内容。
    - reference: 本帧附带的原始引用负载（对象、列表或 JSON 字符串），交给 ReferenceResolver。
    """

    answer_fragment: Optional[str] = None
    is_terminal: bool = False
    reference: Optional[Any] = None


@dataclass(frozen=True)
class SourceDocument:
    """后端检索到的一个文档块，只读。"""

    id: str
    text: str
    name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SourceDocument":
        """兼容两种结构：

        - {id, text, name, metadata}
        - 后端扁平结构 {chunkId, documentId, documentName, text, score, pageRange, contentType, documentUrl}
        """

        metadata = dict(payload.get("metadata") or {})
        for key in _FLAT_DOCUMENT_FIELDS:
            if payload.get(key) is not None:
                metadata.setdefault(key, payload[key])
        doc_id = payload.get("id") or payload.get("chunkId") or payload.get("documentId") or ""
        name = payload.get("name") or payload.get("documentName") or metadata.get("fileName")
        return cls(
            id=str(doc_id),
            text=payload.get("text") or "",
            name=name or None,
            metadata=metadata,
        )


@dataclass
class ReferenceEntry:
    """一轮助手回答对应的引用集合。

    chat_id 为后端记录的助手消息 id（可选），用于历史消息的精确匹配。
    """

    documents: List[SourceDocument] = field(default_factory=list)
    chat_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.documents


@dataclass(frozen=True)
class CitationRecord:
    """消息上的一条引用。ordinal_id 在消息内唯一且绑定后不再变化。"""

    ordinal_id: int
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.ordinal_id, "text": self.text, "metadata": dict(self.metadata)}


@dataclass
class ConversationMessage:
    """交给渲染层的一条消息。

    - content: 已做引用标记规范化、并带引用尾注的文本。
    - citations: 结构化引用列表，供悬浮卡片/脚注等独立展示。
    - trailer: content 末尾由系统追加的引用行（没有引用时为空串）。
    """

    id: str
    role: Role
    content: str
    citations: List[CitationRecord] = field(default_factory=list)
    trailer: str = ""
    _citations_attached: bool = field(default=False, init=False, repr=False, compare=False)

    @property
    def body(self) -> str:
        """模型生成的正文部分（不含引用尾注）。"""

        if self.trailer and self.content.endswith(self.trailer):
            return self.content[: len(self.content) - len(self.trailer)]
        return self.content

    def attach_citations(self, citations: List[CitationRecord], trailer: str = "") -> None:
        """绑定引用并追加尾注，只允许调用一次，避免编号被重排。"""

        if self._citations_attached:
            raise BusinessError(
                code="CITATIONS_ALREADY_ATTACHED",
                message=f"Citations already attached to message {self.id}",
            )
        self.citations = list(citations)
        self.trailer = trailer
        if trailer:
            self.content = self.content + trailer
        self._citations_attached = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "citations": [c.to_dict() for c in self.citations],
        }


@dataclass
class StreamResult:
    """一次流式回答的汇总。

    - answer: 累积的完整回答文本。
    - terminated: 是否收到了结束标记（False 表示连接在结束标记之前就关闭了）。
    - references: 从流事件中解析出的引用，按到达顺序排列。
    """

    answer: str
    terminated: bool
    references: List[ReferenceEntry] = field(default_factory=list)
