"""RAG Chat Core 顶层包。

该包提供 RAG 问答前端的核心逻辑：SSE 流式回答组装、
reference 旁路字段解析、引用匹配与引用标记规范化，
以及与后端交互的 HTTP 客户端和会话管理。
"""

from rag_chat_core.session import ChatSession
from rag_chat_core.streaming import assemble_answer, aassemble_answer

__all__ = ["ChatSession", "assemble_answer", "aassemble_answer"]
