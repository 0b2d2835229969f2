"""Tk bubble that shows translations next to the mouse pointer."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, List, Optional, Tuple, Union

try:
    import tkinter as tk
    from tkinter import font as tkfont
except ImportError:  # pragma: no cover - tkinter ships with the Windows/macOS installers
    tk = None  # type: ignore
    tkfont = None  # type: ignore

from translation_service import ErrorResult, TranslationResult


logger = logging.getLogger("llmcliptranslator.bubble")

DeliveredResult = Union[TranslationResult, ErrorResult]

BUBBLE_BACKGROUND = "#f8f9fa"
TEXT_COLOR = "#202124"
ERROR_COLOR = "#c5221f"
CAPTION_COLOR = "#5f6368"


def wrap_text(text: str, max_length: Optional[int]) -> str:
    """Wrap each line of ``text`` at word boundaries to ``max_length`` characters.

    Existing line breaks are kept. A word longer than ``max_length`` stays on
    a line of its own. ``None`` or a non-positive width disables wrapping.
    """

    if not max_length or max_length <= 0:
        return text

    result: List[str] = []
    for line in text.split("\n"):
        if len(line) <= max_length:
            result.append(line)
            continue
        current = ""
        for word in line.split():
            if not current:
                current = word
            elif len(current) + 1 + len(word) <= max_length:
                current += " " + word
            else:
                result.append(current)
                current = word
        result.append(current)
    return "\n".join(result)


def caption_for(result: DeliveredResult) -> str:
    if isinstance(result, ErrorResult):
        return "Translation failed"
    return f"{result.source_language} → {result.target_language}"


class BubbleUnavailableError(RuntimeError):
    """Raised by :meth:`TranslationBubbleManager.show` when Tk could not start."""


class TranslationBubbleManager:
    """Create and reuse a single borderless Tk window for translations."""

    def __init__(self, *, max_line_length: Optional[int] = None) -> None:
        if tk is None:
            raise RuntimeError("tkinter is required to display the translation bubble")
        self._max_line_length = max_line_length
        self._queue: "queue.Queue[DeliveredResult]" = queue.Queue()
        self._ready = threading.Event()
        self._start_lock = threading.Lock()
        self._startup_error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    def show(self, result: DeliveredResult) -> None:
        """Queue ``result`` for the bubble, starting the Tk thread on first use.

        Raises :class:`BubbleUnavailableError` when the window cannot be
        created, so the caller can fall back to another output.
        """

        with self._start_lock:
            if self._thread is None or not self._thread.is_alive():
                self._startup_error = None
                self._ready.clear()
                self._thread = threading.Thread(target=self._run_window, name="TranslationBubble", daemon=True)
                self._thread.start()
                self._ready.wait()
            error = self._startup_error
        if error is not None:
            raise BubbleUnavailableError(f"Translation bubble is unavailable: {error}") from error
        self._queue.put(result)

    def _run_window(self) -> None:
        try:
            window, render = self._build_window()
        except Exception as exc:
            logger.error("Could not create the translation bubble: %s", exc)
            self._startup_error = exc
            return
        finally:
            self._ready.set()

        def apply_update() -> None:
            try:
                while True:
                    render(self._queue.get_nowait())
            except queue.Empty:
                pass
            window.after(100, apply_update)

        apply_update()
        window.mainloop()

    def _build_window(self) -> Tuple["tk.Tk", Callable[[DeliveredResult], None]]:
        window = tk.Tk()
        window.withdraw()
        window.overrideredirect(True)
        window.configure(bg=BUBBLE_BACKGROUND, highlightthickness=1, highlightbackground="#dadce0")

        base_family = tkfont.nametofont("TkDefaultFont").actual("family")
        caption_font = tkfont.Font(family=base_family, size=9)
        text_font = tkfont.Font(family=base_family, size=13)

        caption = tk.Label(window, font=caption_font, bg=BUBBLE_BACKGROUND, fg=CAPTION_COLOR, anchor="w")
        caption.pack(fill=tk.X, padx=12, pady=(8, 0))

        body = tk.Text(
            window,
            wrap=tk.NONE,
            font=text_font,
            bg=BUBBLE_BACKGROUND,
            relief=tk.FLAT,
            bd=0,
            highlightthickness=0,
            padx=12,
            pady=8,
        )
        body.pack(fill=tk.BOTH, expand=True)
        shown_text = {"value": ""}

        def hide_window(_event: Optional["tk.Event"] = None) -> str:
            window.withdraw()
            return "break"

        def copy_text(_event: Optional["tk.Event"] = None) -> str:
            try:
                selected = body.get(tk.SEL_FIRST, tk.SEL_LAST)
            except tk.TclError:
                selected = ""
            window.clipboard_clear()
            window.clipboard_append(selected or shown_text["value"])
            return "break"

        def on_focus_out(event: "tk.Event") -> None:
            if event.widget is window:
                window.after(150, hide_window)

        window.bind("<Escape>", hide_window)
        window.bind("<FocusOut>", on_focus_out)
        body.bind("<Control-c>", copy_text)
        body.bind("<Command-c>", copy_text)

        def place_near_pointer() -> None:
            window.update_idletasks()
            width = window.winfo_reqwidth()
            height = window.winfo_reqheight()
            pointer_x = window.winfo_pointerx()
            pointer_y = window.winfo_pointery()
            max_x = max(window.winfo_screenwidth() - width, 0)
            max_y = max(window.winfo_screenheight() - height, 0)
            x = min(max(pointer_x + 12, 0), max_x)
            y = min(max(pointer_y + 12, 0), max_y)
            window.geometry(f"+{x}+{y}")

        def render(result: DeliveredResult) -> None:
            logger.debug("Showing result of run %d", result.run_id)
            text = wrap_text(result.text, self._max_line_length)
            shown_text["value"] = text
            lines = text.split("\n")
            caption.configure(text=caption_for(result))
            body.configure(state=tk.NORMAL, fg=ERROR_COLOR if isinstance(result, ErrorResult) else TEXT_COLOR)
            body.delete("1.0", tk.END)
            body.insert(tk.END, text)
            body.configure(
                state=tk.DISABLED,
                width=max(min(max(len(line) for line in lines), 100), 10),
                height=min(len(lines), 30),
            )
            place_near_pointer()
            window.deiconify()
            window.lift()
            window.attributes("-topmost", True)
            window.focus_force()
            body.focus_set()

        return window, render
