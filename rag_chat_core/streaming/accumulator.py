"""回答累加器。

维护当前这一轮的完整回答文本，每次成功追加后把全文推送给订阅者，
用于前端逐字渲染。
"""

from typing import Callable, List

from rag_chat_core.infrastructure.logging.logger import logger

AnswerListener = Callable[[str], None]


class AnswerAccumulator:
    def __init__(self) -> None:
        self._text = ""
        self._finished = False
        self._listeners: List[AnswerListener] = []

    @property
    def text(self) -> str:
        return self._text

    @property
    def finished(self) -> bool:
        return self._finished

    def subscribe(self, listener: AnswerListener) -> Callable[[], None]:
        """注册订阅者，返回取消订阅函数。"""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def reset(self) -> None:
        """新一轮开始时清空。"""

        self._text = ""
        self._finished = False

    def append(self, fragment: str) -> bool:
        """追加片段，返回是否真的改变了文本。

        已有文本以该片段结尾时视为重复投递，直接忽略。
        """

        if self._finished or not fragment:
            return False
        if self._text.endswith(fragment):
            logger.debug("Suppressed duplicate fragment", extra={"extra": {"fragment_len": len(fragment)}})
            return False
        self._text += fragment
        self._publish()
        return True

    def finish(self) -> None:
        """收到结束标记，本轮不再接受追加。"""

        self._finished = True

    def _publish(self) -> None:
        for listener in list(self._listeners):
            listener(self._text)
