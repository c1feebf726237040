import os
import tempfile

# 日志在 import 时就会创建目录，测试期间写到临时目录
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="rag_chat_logs_"))
