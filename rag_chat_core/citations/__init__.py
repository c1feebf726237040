from rag_chat_core.citations.correlator import CitationCorrelator, new_message_id, normalize_role

__all__ = ["CitationCorrelator", "new_message_id", "normalize_role"]
