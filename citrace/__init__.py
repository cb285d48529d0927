from .carrier import (
    HandoffStore,
    decode_child,
    decode_lines,
    decode_parent,
    decode_root,
    encode_lines,
)
from .config import Config, load_config
from .emitter import LogEmitter
from .lifecycle import SpanLifecycleController
from .models import StepRecord, StepStatus, TraceContext
from .runtime import Runtime, create_runtime

__all__ = [
    # Config
    "Config",
    "load_config",
    # Carrier
    "encode_lines",
    "decode_lines",
    "decode_parent",
    "decode_child",
    "decode_root",
    "HandoffStore",
    # Lifecycle
    "SpanLifecycleController",
    "Runtime",
    "create_runtime",
    # Emitter
    "LogEmitter",
    # Models
    "TraceContext",
    "StepRecord",
    "StepStatus",
]
