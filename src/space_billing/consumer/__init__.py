"""Lambda queue consumer for space billing instructions."""

from .handler import handler
from .processor import (
    BatchResult,
    StructuredLogger,
    decode_instruction,
    encode_instruction,
    process_queue_records,
)

__all__ = [
    "handler",
    "process_queue_records",
    "BatchResult",
    "StructuredLogger",
    "encode_instruction",
    "decode_instruction",
]
