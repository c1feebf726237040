"""reference / message 旁路字段解析。

后端把每轮助手回答的引用文档序列化成 JSON 字符串放在 ``reference`` 字段里，
对话消息放在 ``message`` 字段里。两者都可能缺失或损坏：这里一律降级为空列表，
只记录告警日志，不向调用方抛异常（宁可没有引用，也要把回答展示出来）。
"""

import json
import logging
from typing import Any, Dict, List, Optional

from rag_chat_core.domain.models import ReferenceEntry, SourceDocument
from rag_chat_core.infrastructure.logging.logger import logger


def _decode(raw: Any, field_name: str) -> Optional[Any]:
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        return raw
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.log(
            logging.WARNING,
            f"Failed to decode {field_name} payload",
            extra={"extra": {"field": field_name, "error": str(exc), "length": len(raw)}},
        )
        return None


def _entry_from_payload(item: Any) -> ReferenceEntry:
    """单个引用条目；结构不对时返回空条目以保留位置。"""

    if isinstance(item, list):
        docs_raw: Any = item
        chat_id = None
    elif isinstance(item, dict):
        docs_raw = item.get("documents")
        if docs_raw is None:
            docs_raw = item.get("reference")
        chat_id = item.get("chatid") or item.get("chatId") or item.get("chat_id")
    else:
        return ReferenceEntry()

    documents = [SourceDocument.from_payload(d) for d in (docs_raw or []) if isinstance(d, dict)]
    return ReferenceEntry(documents=documents, chat_id=str(chat_id) if chat_id else None)


def resolve_references(raw: Any) -> List[ReferenceEntry]:
    """把 reference 字段解析为按轮次排列的 ReferenceEntry 列表。

    Args:
        raw: JSON 字符串、已解码的列表/对象，或 None。

    Returns:
        引用条目列表；任何解析失败都返回空列表。
    """

    data = _decode(raw, "reference")
    if data is None:
        return []
    if isinstance(data, dict):
        return [_entry_from_payload(data)]
    if not isinstance(data, list):
        logger.log(
            logging.WARNING,
            "Unexpected reference payload type",
            extra={"extra": {"type": type(data).__name__}},
        )
        return []
    return [_entry_from_payload(item) for item in data]


def resolve_messages(raw: Any) -> List[Dict[str, Any]]:
    """把 message 字段解析为原始对话轮次列表（每项至少有 role/content）。"""

    data = _decode(raw, "message")
    if not isinstance(data, list):
        if data is not None:
            logger.log(
                logging.WARNING,
                "Unexpected message payload type",
                extra={"extra": {"type": type(data).__name__}},
            )
        return []
    return [item for item in data if isinstance(item, dict)]
