"""
StreamCutter - cut a time range out of an uploaded media file.

Handles an upload by:
1. Validating its type, size and the requested time range
2. Saving it under a unique name in the temp namespace
3. Running ffmpeg in stream-copy mode with a timeout
4. Verifying the output and handing it to the caller

A background janitor reclaims temp files that outlive the retention age.
"""

from streamcutter.config import Config, default_config, get_config
from streamcutter.errors import (
    ErrCode,
    StreamCutterError,
    CutValidationError,
    StorageError,
    SpawnError,
    ExecutionError,
    EmptyOutputError,
)
from streamcutter.models import (
    CutRequest,
    CutResult,
    CutState,
    ProcessOutcome,
    SweepReport,
    TempFile,
    TempFilePurpose,
)
from streamcutter.validation import is_allowed, is_within_size_limit, content_type_for
from streamcutter.temp_files import TempNamespace
from streamcutter.process_runner import ProcessRunner, check_binary
from streamcutter.orchestrator import CutOrchestrator, build_cut_arguments, format_timestamp
from streamcutter.janitor import TempJanitor

__version__ = "0.1.0"

__all__ = [
    # Config
    "Config",
    "default_config",
    "get_config",

    # Errors
    "ErrCode",
    "StreamCutterError",
    "CutValidationError",
    "StorageError",
    "SpawnError",
    "ExecutionError",
    "EmptyOutputError",

    # Models
    "CutRequest",
    "CutResult",
    "CutState",
    "ProcessOutcome",
    "SweepReport",
    "TempFile",
    "TempFilePurpose",

    # Validation
    "is_allowed",
    "is_within_size_limit",
    "content_type_for",

    # Temp namespace
    "TempNamespace",

    # Process runner
    "ProcessRunner",
    "check_binary",

    # Orchestrator
    "CutOrchestrator",
    "build_cut_arguments",
    "format_timestamp",

    # Janitor
    "TempJanitor",
]
