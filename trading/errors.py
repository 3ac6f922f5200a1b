"""Exception types raised at the tick engine seams."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Missing or invalid credentials/storage configuration. Fatal at startup."""


class SwapStepError(RuntimeError):
    """One step of the swap pipeline failed; `step` names it."""

    def __init__(self, step: str, detail: str) -> None:
        super().__init__(f"{step}:{detail}")
        self.step = step
        self.detail = detail
