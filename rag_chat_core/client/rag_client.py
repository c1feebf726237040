"""RAG 后端 HTTP 客户端。

接口（路径均可在配置中修改）：
- 流式问答: POST {base}{stream_path}，Accept: text/event-stream，请求体 {"question", "conversationId"}
- 非流式问答: POST {base}{chat_path}
- 历史消息: GET {base}{history_path}?conversationId=...
- 认证: Authorization: Bearer <api_token>（仅透传）

非流式接口可能把结果包在 {"success": true, "data": {...}} 里，这里统一拆开。
"""

from typing import Any, Dict, Optional

import httpx

from rag_chat_core.config.settings import settings
from rag_chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from rag_chat_core.domain.models import StreamResult
from rag_chat_core.streaming.accumulator import AnswerAccumulator, AnswerListener
from rag_chat_core.streaming.pipeline import aassemble_answer, assemble_answer


class RagApiClient:
    """RAG 后端客户端实现，同时提供同步与异步流式接口。"""

    name = "rag"

    def __init__(self, cfg=settings):
        self._settings = cfg

    # ---- 流式 ----

    def stream_answer(
        self,
        question: str,
        conversation_id: Optional[str] = None,
        on_update: Optional[AnswerListener] = None,
        accumulator: Optional[AnswerAccumulator] = None,
    ) -> StreamResult:
        payload = self._question_payload(question, conversation_id)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    self._url(self._settings.stream_path),
                    json=payload,
                    headers=self._headers(stream=True),
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp)
                    return assemble_answer(
                        resp.iter_bytes(),
                        on_update=on_update,
                        accumulator=accumulator,
                        done_sentinel=self._settings.done_sentinel,
                    )
        except (httpx.RequestError, httpx.StreamError) as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    async def astream_answer(
        self,
        question: str,
        conversation_id: Optional[str] = None,
        on_update: Optional[AnswerListener] = None,
        accumulator: Optional[AnswerAccumulator] = None,
    ) -> StreamResult:
        payload = self._question_payload(question, conversation_id)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    self._url(self._settings.stream_path),
                    json=payload,
                    headers=self._headers(stream=True),
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        self._raise_for_status(resp)
                    return await aassemble_answer(
                        resp.aiter_bytes(),
                        on_update=on_update,
                        accumulator=accumulator,
                        done_sentinel=self._settings.done_sentinel,
                    )
        except (httpx.RequestError, httpx.StreamError) as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    # ---- 非流式 ----

    def send_message(self, question: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
        """非流式问答，返回拆包后的会话数据（message/reference 均为 JSON 字符串）。"""

        payload = self._question_payload(question, conversation_id)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    self._url(self._settings.chat_path),
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp)
        return self._unwrap(resp)

    def fetch_history(self, conversation_id: str) -> Dict[str, Any]:
        if not conversation_id:
            raise ValidationError(code="MISSING_CONVERSATION_ID", message="conversation_id is required")
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.get(
                    self._url(self._settings.history_path),
                    params={"conversationId": conversation_id},
                    headers=self._headers(),
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp)
        return self._unwrap(resp)

    # ---- 辅助方法 ----

    def _url(self, path: str) -> str:
        base = (getattr(self._settings, "api_base_url", None) or "").rstrip("/")
        return f"{base}/{path.lstrip('/')}"

    def _headers(self, stream: bool = False) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        token = getattr(self._settings, "api_token", None)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @staticmethod
    def _question_payload(question: str, conversation_id: Optional[str]) -> Dict[str, Any]:
        if not question or not question.strip():
            raise ValidationError(code="EMPTY_QUESTION", message="question must not be empty")
        return {"question": question.strip(), "conversationId": conversation_id or ""}

    @staticmethod
    def _raise_for_status(resp) -> None:
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="RAG backend rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)

    @staticmethod
    def _unwrap(resp) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as e:
            raise ApiError(code="INVALID_RESPONSE", message=f"Response is not JSON: {e}", http_status=502)
        if isinstance(body, dict) and "success" in body:
            if not body.get("success"):
                raise ApiError(
                    code="API_ERROR",
                    message=str(body.get("message") or "request failed"),
                    http_status=resp.status_code,
                )
            body = body.get("data")
        if not isinstance(body, dict):
            raise ApiError(code="INVALID_RESPONSE", message="Response body is not an object", http_status=502)
        return body
