"""SSE 事件解析。

把一个完整帧解析成 ContentDelta：

- 标准帧：``data: {"answer": "...", "reference": ...}``，answer 为 "[DONE]" 时表示本轮结束。
- JSON 解析失败：把 ``data:`` 之后的原始文本当作回答片段（去掉首尾空白）。
- 没有 ``data:`` 前缀：部分非标准服务端会直接写正文，整帧当作回答片段。

结束帧返回 is_terminal=True 的增量而不是中断处理，后续是否继续读由调用方决定。
"""

import json
from typing import Optional

from rag_chat_core.config.settings import settings
from rag_chat_core.domain.models import ContentDelta

DATA_PREFIX = "data:"


def _is_comment(frame: str) -> bool:
    lines = [line for line in frame.splitlines() if line.strip()]
    return bool(lines) and all(line.lstrip().startswith(":") for line in lines)


def parse_frame(frame: str, done_sentinel: Optional[str] = None) -> Optional[ContentDelta]:
    """解析单个帧，空帧/注释帧返回 None。"""

    sentinel = done_sentinel or settings.done_sentinel
    event = (frame or "").strip()
    if not event or _is_comment(event):
        return None

    prefix_index = event.find(DATA_PREFIX)
    if prefix_index == -1:
        if event == sentinel:
            return ContentDelta(is_terminal=True)
        return ContentDelta(answer_fragment=event)

    raw = event[prefix_index + len(DATA_PREFIX):]
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        content = raw.strip()
        if not content:
            return None
        if content == sentinel:
            return ContentDelta(is_terminal=True)
        return ContentDelta(answer_fragment=content)

    if not isinstance(payload, dict):
        return None

    answer = payload.get("answer")
    reference = payload.get("reference")
    if answer == sentinel:
        return ContentDelta(is_terminal=True, reference=reference)
    if isinstance(answer, str) and answer:
        return ContentDelta(answer_fragment=answer, reference=reference)
    if reference is not None:
        return ContentDelta(reference=reference)
    return None
