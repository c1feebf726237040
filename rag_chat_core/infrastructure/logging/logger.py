import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict

from rag_chat_core.config.settings import settings


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("rag_chat_core")
    logger.setLevel(logging.INFO)
    # 重复 import/reload 时不重复挂 handler
    if any(getattr(h, "_rag_chat_core", False) for h in logger.handlers):
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "rag_chat.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(JsonFormatter())
    fh._rag_chat_core = True  # type: ignore[attr-defined]
    logger.addHandler(fh)
    return logger


def log_event(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
    payload = dict(log_ctx)
    payload.update(fields)
    logger.log(level, message, extra={"extra": payload})


logger = setup_logger()
