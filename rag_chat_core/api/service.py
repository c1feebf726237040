"""对外 API 服务模块。

提供简化的函数接口供渲染层调用，返回可直接序列化的字典。
"""

from typing import Any, Callable, Dict, List, Optional

from rag_chat_core.config.settings import settings
from rag_chat_core.client.rag_client import RagApiClient
from rag_chat_core.domain.models import ConversationMessage
from rag_chat_core.infrastructure.logging.logger import logger
from rag_chat_core.session.chat_session import ChatSession


_client: Optional[RagApiClient] = None
_sessions: Dict[str, ChatSession] = {}


def get_default_client() -> RagApiClient:
    """获取默认的后端客户端实例（单例）。"""
    global _client
    if _client is None:
        _client = RagApiClient(settings)
    return _client


def get_session(conversation_id: str) -> ChatSession:
    """按会话 id 复用 ChatSession，保证同一会话共享在途标记。"""
    session = _sessions.get(conversation_id)
    if session is None:
        session = ChatSession(conversation_id=conversation_id, client=get_default_client())
        _sessions[conversation_id] = session
    return session


def drop_session(conversation_id: str) -> bool:
    """会话关闭时释放对应的 ChatSession。

    有轮次在途时不释放，避免后续同会话请求拿到新 session 绕过在途标记。
    返回是否真的移除了。
    """
    session = _sessions.get(conversation_id)
    if session is None or session.in_flight:
        return False
    del _sessions[conversation_id]
    return True


def message_to_dict(message: ConversationMessage) -> Dict[str, Any]:
    return message.to_dict()


def run_rag_chat(
    question: str,
    conversation_id: str,
    on_update: Optional[Callable[[str], None]] = None,
) -> Dict[str, Any]:
    """流式提问一次并返回最终助手消息。

    Args:
        question: 用户问题
        conversation_id: 会话ID
        on_update: 可选回调，每次回答增长时收到当前全文

    Returns:
        包含会话ID、助手消息（含 citations）的字典

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    session = get_session(conversation_id)
    unsubscribe = session.subscribe(on_update) if on_update else None
    try:
        message = session.ask(question)
        return {
            "conversation_id": conversation_id,
            "assistant_message": message_to_dict(message),
        }
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "conversation_id": conversation_id,
            "error": str(e),
            "partial_answer_length": len(session.partial_answer),
        }})
        raise
    finally:
        if unsubscribe:
            unsubscribe()


def get_conversation_messages(conversation_id: str) -> List[Dict[str, Any]]:
    """加载会话历史，每条助手消息都已匹配引用并规范化标记。

    Args:
        conversation_id: 会话ID

    Returns:
        消息列表
    """
    session = get_session(conversation_id)
    return [message_to_dict(m) for m in session.load_history()]
