"""SSE 帧切分器。

网络层交付的文本块可能在任意位置被截断，本模块只负责按空行（"\\n\\n"）
把它们重新切成完整的帧，未以分隔符结尾的尾部数据留在缓冲区等待后续块补齐。

不限制单帧大小：发送方一直不发分隔符时缓冲区会无限增长，这是已知风险。
"""

from typing import List, Optional

FRAME_DELIMITER = "\n\n"


class FrameDecoder:
    """有状态的帧切分器，一个实例只服务一次流式会话。"""

    def __init__(self) -> None:
        self._buffer = ""
        # 块末尾的 "\r" 先扣住，等下一块确认是否为 CRLF
        self._pending_cr = False

    @property
    def buffered(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> List[str]:
        """追加一个文本块，按顺序返回其中已完整的帧。"""

        if not chunk:
            return []
        if self._pending_cr:
            chunk = "\r" + chunk
            self._pending_cr = False
        if chunk.endswith("\r"):
            chunk = chunk[:-1]
            self._pending_cr = True
        self._buffer += chunk.replace("\r\n", "\n")

        pieces = self._buffer.split(FRAME_DELIMITER)
        # 最后一段（可能为空）是尚未结束的帧
        self._buffer = pieces.pop()
        return pieces

    def flush(self) -> Optional[str]:
        """流结束时取出剩余缓冲区，非空则作为最后一帧返回。"""

        remaining = self._buffer
        if self._pending_cr:
            remaining += "\r"
        self._buffer = ""
        self._pending_cr = False
        if not remaining.strip():
            return None
        return remaining
