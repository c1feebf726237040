"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

注意：SSE 负载或 reference 的解码失败、引用匹配不到，都不是错误，
只在各自模块内部降级处理并记录日志，不会以异常形式抛给调用方。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "TURN_IN_FLIGHT"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、url 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时、读流中断等。"""


class ApiError(BusinessError):
    """后端 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """后端限流错误，由上层负责重试/退避策略。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class TurnInFlightError(BusinessError):
    """同一会话上一轮流式回答尚未结束时又发起了新一轮。"""

    def __init__(self, message: str = "A chat turn is already streaming", **extra):
        super().__init__(code="TURN_IN_FLIGHT", message=message, http_status=409, **extra)
