"""
Core Module
Block windows, wire models and the block reconciler.

Exports:
    Windows: window_start, window_end, window_for, current_window_from_reading, format_window
    Models: Block, HistoryBlock, Reading, PushEvent (+ variants), parse_push_event
    Converters: to_block, to_history_blocks, zero_block
    Reconciler: BlockReconciler
    Errors: EngineError, FetchError, ValidationError, ...
"""

from .window import (
    WINDOW,
    WINDOW_MINUTES,
    window_start,
    window_end,
    window_for,
    current_window_from_reading,
    format_window,
    parse_timestamp,
    resolve_timezone,
)

from .models import (
    Block,
    HistoryBlock,
    Reading,
    ChartBins,
    ReadingEvent,
    BlockUpdateEvent,
    AlertEvent,
    PingEvent,
    PushEvent,
    parse_push_event,
    to_block,
    to_history_block,
    to_history_blocks,
    zero_block,
)

from .errors import (
    EngineError,
    TransportError,
    FetchError,
    DispatchError,
    ConfigurationError,
    ValidationError,
    TriggerNotFound,
)

from .reconciler import BlockReconciler

__all__ = [
    # Windows
    "WINDOW",
    "WINDOW_MINUTES",
    "window_start",
    "window_end",
    "window_for",
    "current_window_from_reading",
    "format_window",
    "parse_timestamp",
    "resolve_timezone",
    # Models
    "Block",
    "HistoryBlock",
    "Reading",
    "ChartBins",
    "ReadingEvent",
    "BlockUpdateEvent",
    "AlertEvent",
    "PingEvent",
    "PushEvent",
    "parse_push_event",
    "to_block",
    "to_history_block",
    "to_history_blocks",
    "zero_block",
    # Errors
    "EngineError",
    "TransportError",
    "FetchError",
    "DispatchError",
    "ConfigurationError",
    "ValidationError",
    "TriggerNotFound",
    # Reconciler
    "BlockReconciler",
]
