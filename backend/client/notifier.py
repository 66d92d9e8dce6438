import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger("ideacollab.toast")


class ToastLevel(str, Enum):
    info = "info"
    success = "success"
    error = "error"


@dataclass(frozen=True)
class Toast:
    level: ToastLevel
    message: str


class ToastNotifier:
    """Collects the transient notifications shown to the user of a session."""

    def __init__(self, max_len: int = 50):
        self.toasts: deque[Toast] = deque(maxlen=max_len)

    def notify(self, level: ToastLevel, message: str):
        logger.info(f"[{level.value}] {message}")
        self.toasts.append(Toast(level, message))

    def info(self, message: str):
        self.notify(ToastLevel.info, message)

    def success(self, message: str):
        self.notify(ToastLevel.success, message)

    def error(self, message: str):
        self.notify(ToastLevel.error, message)

    def drain(self) -> list[Toast]:
        toasts = list(self.toasts)
        self.toasts.clear()
        return toasts

    @property
    def messages(self) -> list[str]:
        return [toast.message for toast in self.toasts]
