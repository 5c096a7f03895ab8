from typing import List, Literal

from pydantic import BaseModel


class Toast(BaseModel):
    message: str
    kind: Literal["success", "error"] = "success"


class ToastCollector:
    """Per-request sink for user-facing messages raised by the AI gateway."""

    def __init__(self):
        self._toasts: List[Toast] = []

    def add(self, message: str, kind: str = "success") -> None:
        self._toasts.append(Toast(message=message, kind=kind))

    def drain(self) -> List[Toast]:
        toasts, self._toasts = self._toasts, []
        return toasts
