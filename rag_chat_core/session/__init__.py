from rag_chat_core.session.chat_session import ChatSession

__all__ = ["ChatSession"]
