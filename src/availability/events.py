"""Hook quan sát có cấu trúc: core chỉ phát sự kiện, không tự in/log."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

LOGGER_NAME = "availability"


@dataclass(frozen=True)
class LookupEvent:
    name: str
    key: Optional[str] = None
    fields: Mapping[str, Any] = field(default_factory=dict)


class EventSink(Protocol):
    def emit(self, event: LookupEvent) -> None:
        ...


class NullEventSink:
    """Bỏ qua mọi sự kiện (mặc định)."""

    def emit(self, event: LookupEvent) -> None:
        return None


class LoggingEventSink:
    """Chuyển sự kiện sang logging chuẩn; sự kiện *_error ghi ở mức WARNING."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO) -> None:
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._level = level

    def emit(self, event: LookupEvent) -> None:
        level = logging.WARNING if event.name.endswith("_error") else self._level
        if not self._logger.isEnabledFor(level):
            return
        details = " ".join(f"{k}={v}" for k, v in event.fields.items())
        self._logger.log(
            level,
            "[%s] key=%s %s",
            event.name,
            event.key if event.key is not None else "-",
            details,
            extra={"event": event.name, "event_key": event.key, "event_fields": dict(event.fields)},
        )
