from rag_chat_core.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
