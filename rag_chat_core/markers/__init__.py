from rag_chat_core.markers.normalizer import decode_context_message, has_context_blob, normalize_markers

__all__ = ["decode_context_message", "has_context_blob", "normalize_markers"]
