"""引用标记规范化。

模型输出里的引用标记写法不统一（双层中括号、Citation/citation 大小写混用），
这里按固定顺序做文本替换，统一成 markdown 渲染器能识别的 ``[citation](N)``。
每条规则都先作用于整串文本，再执行下一条；整个过程幂等。

另外支持一种独立的传输格式：``<base64(JSON 上下文)>__LLM_RESPONSE__<可见回答>``，
base64 部分解码后是 ``{"context": [{"page_content": ..., "metadata": {...}}]}``。
"""

import base64
import binascii
import json
import logging
import re
from typing import List, Optional, Tuple

from rag_chat_core.config.settings import settings
from rag_chat_core.domain.models import CitationRecord
from rag_chat_core.infrastructure.logging.logger import logger

# (pattern, replacement)，顺序不能调整：后面的规则依赖前面已经统一了括号层数和大小写
_MARKER_RULES: List[Tuple["re.Pattern[str]", str]] = [
    (re.compile(r"\[{2,}[Cc]itation"), "[citation"),
    (re.compile(r"[Cc]itation:(\d+)\]{2,}"), r"citation:\1]"),
    (re.compile(r"\[\[([Cc])itation:(\d+)\]\]"), r"[\1itation:\2]"),
    (re.compile(r"\[[Cc]itation:(\d+)\]"), r"[citation](\1)"),
]


def normalize_markers(text: str) -> str:
    """把各种引用标记写法统一成 ``[citation](N)``。"""

    if not text:
        return text
    result = text
    for pattern, replacement in _MARKER_RULES:
        result = pattern.sub(replacement, result)
    return result


def has_context_blob(content: str, separator: Optional[str] = None) -> bool:
    return (separator or settings.response_separator) in (content or "")


def decode_context_message(
    content: str,
    separator: Optional[str] = None,
) -> Tuple[str, List[CitationRecord]]:
    """拆分 base64 上下文与可见回答。

    Returns:
        (可见文本, 引用列表)。不含分隔符时原样返回内容、引用为空；
        base64/JSON 解码失败时同样不抛异常，只是没有引用。
    """

    sep = separator or settings.response_separator
    if sep not in (content or ""):
        return content, []

    encoded, _, visible = content.partition(sep)
    encoded = encoded.strip()
    if not encoded:
        return visible, []

    try:
        decoded = json.loads(base64.b64decode(encoded, validate=False).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.log(
            logging.WARNING,
            "Failed to decode context blob",
            extra={"extra": {"error": str(exc), "length": len(encoded)}},
        )
        return visible, []

    context = decoded.get("context") if isinstance(decoded, dict) else None
    if context is not None and not isinstance(context, list):
        logger.log(
            logging.WARNING,
            "Context blob has non-list context",
            extra={"extra": {"context_type": type(context).__name__}},
        )
        context = []
    citations: List[CitationRecord] = []
    for index, item in enumerate(context or [], start=1):
        if not isinstance(item, dict):
            item = {}
        text = item.get("page_content")
        if text is None:
            text = item.get("pageContent", "")
        citations.append(
            CitationRecord(
                ordinal_id=index,
                text=text or "",
                metadata=dict(item.get("metadata") or {}),
            )
        )
    return visible, citations
