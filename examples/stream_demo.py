"""Minimal demonstration of a streamed RAG chat turn."""

import sys

from rag_chat_core import ChatSession

if __name__ == "__main__":
    question = "贷款逾期 30 天以上会有什么影响？"
    session = ChatSession(conversation_id=sys.argv[1] if len(sys.argv) > 1 else None)
    session.subscribe(lambda text: print("\r" + text[-80:], end="", flush=True))
    reply = session.ask(question)
    print()
    print("User:", question)
    print("Agent:", reply.content)
    for citation in reply.citations:
        print(f"  [{citation.ordinal_id}] {citation.metadata.get('file_name')}")
