"""Desktop utility that translates the clipboard with an LLM after a double copy."""

from __future__ import annotations

import argparse
import contextlib
import itertools
import logging
import sys
import tempfile
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Callable, Optional, Sequence, Union

from clipboard_monitor import (
    ClipboardError,
    ClipboardProtocol,
    ClipboardSnapshot,
    DoubleCopyDetector,
    create_system_clipboard,
)
from language_detector import LanguageDetector
from settings import (
    MODE_OFFLINE,
    MODE_ONLINE,
    SETTINGS_FILE,
    Settings,
    describe_endpoint,
    load_settings,
    write_default_settings,
)
from translation_service import (
    ChatCompletionsClient,
    ErrorResult,
    PromptBuilder,
    TranslationError,
    TranslationResult,
    TranslationService,
)


APP_NAME = "LLMClipTranslator"
LOGGER_NAME = "llmcliptranslator"

LOG_FILE_NAME = "llmcliptranslator.log"
LOG_MAX_BYTES = 2_097_152
LOG_BACKUP_COUNT = 3
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

logger = logging.getLogger(f"{LOGGER_NAME}.app")

DeliveredResult = Union[TranslationResult, ErrorResult]
DisplayCallback = Callable[[DeliveredResult], None]
RunSpawner = Callable[[Callable[[], None]], None]


def configure_logging(log_dir: Path, *, verbose: bool = False) -> logging.Logger:
    """Attach a rotating file handler and a console handler to the app logger."""

    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    if root.handlers:
        return root

    formatter = logging.Formatter(LOG_FORMAT)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"File logging is disabled: {exc}", file=sys.stderr)
    else:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    return root


def build_translation_service(settings: Settings) -> TranslationService:
    """Create the client and helpers for the configured endpoint.

    Raises :class:`translation_service.ConfigurationError` when the endpoint
    cannot be resolved.
    """

    client = ChatCompletionsClient(
        settings.endpoint(),
        settings.parameters,
        timeout=settings.request_timeout,
    )
    return TranslationService(
        client,
        LanguageDetector(settings.language),
        PromptBuilder.from_file(settings.few_shot_examples_file),
    )


def spawn_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name="TranslationRun", daemon=True).start()


class ClipTranslationApp:
    """Polls the clipboard and translates its text after every double copy."""

    def __init__(
        self,
        settings: Settings,
        *,
        clipboard: ClipboardProtocol,
        service_factory: Optional[Callable[[Settings], TranslationService]] = None,
        time_provider: Callable[[], float] = time.monotonic,
        display_callback: Optional[DisplayCallback] = None,
        run_spawner: RunSpawner = spawn_thread,
    ) -> None:
        self.settings = settings
        self._clipboard = clipboard
        self._service_factory = service_factory or build_translation_service
        self._service: Optional[TranslationService] = None
        self._service_lock = threading.Lock()
        self._time_provider = time_provider
        self._display_callback = display_callback
        self._run_spawner = run_spawner
        self._run_ids = itertools.count(1)
        self._run_ids_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._tray_controller: Optional["SystemTrayController"] = None
        self._detector = DoubleCopyDetector(
            settings.double_copy_gap,
            time_provider,
            initial_counter=self._read_counter(default=0),
        )

    @property
    def service(self) -> TranslationService:
        with self._service_lock:
            if self._service is None:
                self._service = self._service_factory(self.settings)
            return self._service

    @property
    def detector(self) -> DoubleCopyDetector:
        return self._detector

    def start(self, *, tray_controller: Optional["SystemTrayController"] = None) -> None:
        """Run the polling loop on the calling thread until :meth:`stop`."""

        self._tray_controller = tray_controller
        if self._tray_controller is not None:
            self._tray_controller.start()

        mode, url = describe_endpoint(self.settings)
        logger.info(
            "%s is running (%s mode, %s). Copy text twice quickly to translate it.",
            APP_NAME,
            mode,
            url or "endpoint not configured",
        )
        try:
            while not self._stop_event.wait(self.settings.poll_interval):
                self.poll_once()
        except KeyboardInterrupt:  # pragma: no cover - manual console interruption
            self.stop()
        finally:
            if self._tray_controller is not None:
                self._tray_controller.stop()
            logger.info("%s stopped", APP_NAME)

    def stop(self) -> None:
        """Signal the polling loop to exit."""

        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def poll_once(self) -> Optional[int]:
        """Feed one clipboard poll to the detector.

        Returns the id of the translation run started by this tick, if any.
        """

        counter = self._read_counter(default=None)
        if counter is None:
            return None
        if not self._detector.on_tick(counter, self._time_provider()):
            return None
        logger.debug("Double copy detected (counter=%d)", counter)
        return self._handle_double_copy(counter)

    def _read_counter(self, *, default: Optional[int]) -> Optional[int]:
        try:
            return self._clipboard.change_counter()
        except Exception as exc:
            logger.error("Failed to poll clipboard: %s", exc)
            return default

    def _next_run_id(self) -> int:
        with self._run_ids_lock:
            return next(self._run_ids)

    def _handle_double_copy(self, counter: int) -> Optional[int]:
        try:
            text = self._clipboard.current_text()
        except Exception as exc:
            if isinstance(exc, ClipboardError):
                logger.error("%s", exc)
            else:
                logger.error("Unexpected error while accessing clipboard: %s", exc)
            self._detector.reset()
            snapshot = ClipboardSnapshot(counter=counter, text="")
            error = ErrorResult(
                kind=type(exc).__name__,
                message=str(exc) or "Clipboard is not readable",
                run_id=self._next_run_id(),
            )
            self._deliver(error, snapshot)
            return None

        text = (text or "").strip()
        if not text:
            logger.debug("Clipboard holds no text; nothing to translate")
            return None

        snapshot = ClipboardSnapshot(counter=counter, text=text)
        run_id = self._next_run_id()
        logger.info("Starting translation run %d (%d characters)", run_id, len(text))
        self._run_spawner(lambda: self._run_translation(run_id, snapshot))
        return run_id

    def _run_translation(self, run_id: int, snapshot: ClipboardSnapshot) -> None:
        result: DeliveredResult
        try:
            result = self.service.translate(snapshot.text, run_id=run_id)
        except TranslationError as exc:
            logger.warning("Translation run %d failed: %s", run_id, exc)
            result = ErrorResult(
                kind=type(exc).__name__,
                message=str(exc),
                original=snapshot.text,
                run_id=run_id,
            )
        except Exception as exc:
            logger.exception("Unexpected error in translation run %d", run_id)
            result = ErrorResult(
                kind=type(exc).__name__,
                message=str(exc) or "Unexpected error",
                original=snapshot.text,
                run_id=run_id,
            )
        self._deliver(result, snapshot)

    def _is_stale(self, snapshot: ClipboardSnapshot) -> bool:
        current = self._read_counter(default=None)
        return current is not None and current != snapshot.counter

    def _deliver(self, result: DeliveredResult, snapshot: ClipboardSnapshot) -> None:
        if self.settings.discard_stale_results and self._is_stale(snapshot):
            logger.info("Discarding result of run %d; the clipboard changed", result.run_id)
            return
        if isinstance(result, TranslationResult):
            logger.info(
                "Run %d translated %s -> %s", result.run_id, result.source_language, result.target_language
            )
        callback = self._display_callback
        if callback is None:
            print(result.text)
            return
        try:
            callback(result)
        except Exception:
            logger.exception("Failed to display result of run %d", result.run_id)
            print(result.text)


class SingleInstanceError(RuntimeError):
    """Raised when another instance of the application is already running."""


class SingleInstanceGuard:
    """File lock that keeps a second copy from translating every gesture twice."""

    def __init__(self, name: str) -> None:
        self._lock_path = Path(tempfile.gettempdir()) / f"{name}.lock"
        self._lock_file: Optional[IO[str]] = None

    def acquire(self) -> None:
        if self._lock_file is not None:
            return
        self._lock_file = open(self._lock_path, "a+")
        try:
            _lock_file(self._lock_file, locked=True)
        except OSError as exc:
            self._lock_file.close()
            self._lock_file = None
            raise SingleInstanceError(f"{APP_NAME} is already running") from exc

    def release(self) -> None:
        if self._lock_file is None:
            return
        try:
            with contextlib.suppress(OSError):
                _lock_file(self._lock_file, locked=False)
        finally:
            self._lock_file.close()
            self._lock_file = None
            with contextlib.suppress(OSError):
                self._lock_path.unlink()

    def __enter__(self) -> "SingleInstanceGuard":
        self.acquire()
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.release()


def _lock_file(handle: IO[str], *, locked: bool) -> None:
    if sys.platform == "win32":  # pragma: no cover - platform specific
        import msvcrt  # type: ignore

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK if locked else msvcrt.LK_UNLCK, 1)
    else:  # pragma: no cover - exercised on non-Windows platforms
        import fcntl  # type: ignore

        fcntl.flock(handle.fileno(), (fcntl.LOCK_EX | fcntl.LOCK_NB) if locked else fcntl.LOCK_UN)


class SystemTrayController:
    """Tray icon showing the connection mode with an Exit command."""

    def __init__(self, app: ClipTranslationApp) -> None:
        self._app = app
        self._icon = None

    def start(self) -> None:
        # pystray picks a backend at import time and can fail without a display.
        try:
            import pystray  # type: ignore
        except Exception as exc:
            logger.warning("System tray icon is unavailable: %s", exc)
            return

        mode, _ = describe_endpoint(self._app.settings)
        menu = pystray.Menu(
            pystray.MenuItem(f"Mode: {mode}", lambda _icon, _item: None, enabled=False),
            pystray.MenuItem("Exit", self._on_exit),
        )
        try:
            self._icon = pystray.Icon("llmcliptranslator", self._create_icon_image(), APP_NAME, menu=menu)
            self._icon.run_detached()
        except Exception as exc:
            logger.warning("Failed to start system tray icon: %s", exc)
            self._icon = None

    def stop(self) -> None:
        if self._icon is not None:
            self._icon.stop()
            self._icon = None

    def _on_exit(self, icon, _item) -> None:
        self._app.stop()
        icon.stop()

    @staticmethod
    def _create_icon_image():
        from PIL import Image, ImageDraw  # type: ignore

        size = 64
        image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        draw.rounded_rectangle((6, 10, size - 6, size - 18), radius=10, fill=(28, 114, 206, 255))
        draw.polygon([(18, size - 19), (30, size - 19), (16, size - 6)], fill=(28, 114, 206, 255))
        draw.rectangle((20, 22, size - 20, 26), fill=(255, 255, 255, 255))
        draw.rectangle((20, 32, size - 28, 36), fill=(255, 255, 255, 255))
        return image


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Translate the clipboard with a language model after a double copy."
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=SETTINGS_FILE,
        help=f"Path to the JSON settings file (default: {SETTINGS_FILE}).",
    )
    parser.add_argument(
        "--mode",
        choices=(MODE_OFFLINE, MODE_ONLINE),
        default=None,
        help="Override the connection mode from the settings file.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def prepare_settings(config_path: Path, mode: Optional[str] = None) -> Settings:
    """Load settings from ``config_path``, creating the file with defaults first."""

    if not config_path.exists():
        logger.info("Creating default settings file %s", config_path)
        write_default_settings(config_path)
    settings = load_settings(config_path)
    if mode is not None:
        settings = settings.with_mode(mode)
    return settings


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    config_path = args.config.expanduser()
    configure_logging(config_path.parent, verbose=args.verbose)

    settings = prepare_settings(config_path, args.mode)

    try:
        with SingleInstanceGuard("llmcliptranslator"):
            try:
                clipboard = create_system_clipboard()
            except ClipboardError as exc:
                logger.error("%s", exc)
                return 1

            from bubble_window import TranslationBubbleManager

            bubble = TranslationBubbleManager(max_line_length=settings.max_line_length)
            app = ClipTranslationApp(settings, clipboard=clipboard, display_callback=bubble.show)
            app.start(tray_controller=SystemTrayController(app))
    except SingleInstanceError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
