from rag_chat_core.references.resolver import resolve_messages, resolve_references

__all__ = ["resolve_messages", "resolve_references"]
