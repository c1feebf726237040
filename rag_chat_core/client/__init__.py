"""RAG 后端传输层。"""

from rag_chat_core.client.rag_client import RagApiClient

__all__ = ["RagApiClient"]
