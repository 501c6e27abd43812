"""Record batch codec."""

from .record_batch import (
    CODEC_VERSION,
    RecordBatch,
    arrow_schema,
    encode,
    serialize,
    decode
)

__all__ = [
    "CODEC_VERSION",
    "RecordBatch",
    "arrow_schema",
    "encode",
    "serialize",
    "decode"
]
