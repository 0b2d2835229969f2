"""Clipboard polling and double-copy gesture detection."""

from __future__ import annotations

import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

try:  # pragma: no cover - executed during module import
    import pyperclip  # type: ignore
except ImportError:  # pragma: no cover - handled when the clipboard is created
    pyperclip = None  # type: ignore

try:
    import win32clipboard  # type: ignore
except Exception:  # pragma: no cover - optional dependency on non-Windows platforms
    win32clipboard = None  # type: ignore


logger = logging.getLogger("llmcliptranslator.clipboard")

DEFAULT_DOUBLE_COPY_GAP = 0.30
DEFAULT_POLL_INTERVAL = 0.05


class ClipboardError(RuntimeError):
    """Raised when the system clipboard cannot be read."""


class ClipboardProtocol(Protocol):  # pragma: no cover - protocol is for type checking only
    def change_counter(self) -> int:
        """Return a number that changes whenever the clipboard content changes."""

    def current_text(self) -> Optional[str]:
        """Return the clipboard text, or ``None`` when it holds no text."""


@dataclass(frozen=True)
class ClipboardSnapshot:
    counter: int
    text: str


@dataclass
class DoubleCopyDetector:
    """Edge-triggered detector fed with the clipboard change counter.

    ``on_tick`` is called on every poll. A tick whose counter differs from the
    previous one is a copy; it completes a double copy when it happens within
    ``gap`` seconds of the previous copy. Every copy becomes the reference for
    the next one, so a third quick copy pairs with the second.
    """

    gap: float
    now: Callable[[], float] = time.monotonic
    initial_counter: int = 0
    _last_counter: int = field(init=False)
    _last_event_time: float = field(init=False)

    def __post_init__(self) -> None:
        self._last_counter = self.initial_counter
        self._last_event_time = self.now()

    @property
    def last_counter(self) -> int:
        return self._last_counter

    @property
    def last_event_time(self) -> float:
        return self._last_event_time

    def on_tick(self, counter: int, now: Optional[float] = None) -> bool:
        """Register a poll result; return ``True`` on a double copy."""

        if counter == self._last_counter:
            return False

        current = self.now() if now is None else now
        fired = current - self._last_event_time <= self.gap
        self._last_event_time = current
        self._last_counter = counter
        return fired

    def reset(self) -> None:
        """Forget the last copy time so the next copy starts a new pair."""

        self._last_event_time = self.now() - self.gap - 1.0


def _paste_text() -> Optional[str]:
    if pyperclip is None:
        raise ClipboardError(
            "The 'pyperclip' package is required. Install it with 'pip install pyperclip'."
        )
    try:
        text = pyperclip.paste()
    except pyperclip.PyperclipException as exc:
        raise ClipboardError(f"Failed to read clipboard: {exc}") from exc
    return text if isinstance(text, str) else None


class PollingClipboard:
    """Portable clipboard adapter that derives a change counter from content.

    Copying the same text twice leaves the content unchanged, so on platforms
    without a native sequence number the second copy of identical text is not
    seen as a change.
    """

    def __init__(self, paste: Callable[[], Optional[str]] = _paste_text) -> None:
        self._paste = paste
        self._lock = threading.Lock()
        self._counter = 0
        self._last_text: Optional[str] = None
        self._primed = False

    def change_counter(self) -> int:
        try:
            text = self._paste()
        except ClipboardError as exc:
            logger.debug("Clipboard poll failed: %s", exc)
            with self._lock:
                return self._counter
        with self._lock:
            if not self._primed:
                self._primed = True
                self._last_text = text
            elif text != self._last_text:
                self._last_text = text
                self._counter += 1
            return self._counter

    def current_text(self) -> Optional[str]:
        return self._paste()


class Win32SequenceClipboard:
    """Windows adapter backed by ``GetClipboardSequenceNumber``."""

    def __init__(self, paste: Callable[[], Optional[str]] = _paste_text) -> None:
        if win32clipboard is None:  # pragma: no cover - guarded by factory
            raise ClipboardError("pywin32 is not available")
        self._paste = paste

    def change_counter(self) -> int:
        return int(win32clipboard.GetClipboardSequenceNumber())

    def current_text(self) -> Optional[str]:
        return self._paste()


def create_system_clipboard() -> ClipboardProtocol:
    """Return the best clipboard adapter available on this platform."""

    if pyperclip is None:
        raise ClipboardError(
            "The 'pyperclip' package is required. Install it with 'pip install pyperclip'."
        )
    if sys.platform == "win32" and win32clipboard is not None:
        logger.info("Using the Windows clipboard sequence number")
        return Win32SequenceClipboard()
    logger.info("Using content polling to detect clipboard changes")
    return PollingClipboard()
