#!filepath: src/canopticon_app/llm/__init__.py
from canopticon_app.llm.client import (
    ChatModelClient,
    ModelCaller,
    ModelResult,
    extract_json_object,
)
from canopticon_app.llm.errors import ErrorKind, LLMError

__all__ = [
    "ChatModelClient",
    "ErrorKind",
    "LLMError",
    "ModelCaller",
    "ModelResult",
    "extract_json_object",
]
