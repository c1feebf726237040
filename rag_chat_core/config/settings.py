"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：显式参数 > 环境变量 > .env > config.yaml > secrets。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("RAG_CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 后端 API ----
    api_base_url: str = Field(
        default="http://localhost:8080",
        description="RAG 后端 API 基础URL",
    )
    api_token: Optional[str] = Field(default=None, description="透传给后端的 Bearer token")
    stream_path: str = Field(default="/chat/rag/stream", description="流式问答接口路径（SSE）")
    chat_path: str = Field(default="/chat/rag", description="非流式问答接口路径")
    history_path: str = Field(default="/chat/rag/msg/list", description="历史消息接口路径")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 流式协议与引用展示 ----
    done_sentinel: str = Field(default="[DONE]", description="流式回答结束标记")
    response_separator: str = Field(
        default="__LLM_RESPONSE__",
        description="base64 上下文与可见回答之间的分隔符",
    )
    citation_trailer_label: str = Field(
        default="Sources: ",
        description="追加在回答末尾的引用行前缀",
    )
    knowledge_base_label: str = Field(
        default="Knowledge base {kb_id}",
        description="知识库无名称时的展示名模板",
    )
    document_label: str = Field(
        default="Document {doc_id}",
        description="文档无名称时的展示名模板",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("done_sentinel", "response_separator")
    @classmethod
    def non_empty_marker(cls, v: str) -> str:
        if not v:
            raise ValueError("protocol markers must not be empty")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
