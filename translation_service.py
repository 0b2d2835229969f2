"""Prompt construction and chat-completions client for LLMClipTranslator."""

from __future__ import annotations

import json
import logging
import re
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from language_detector import LanguageDetector


logger = logging.getLogger("llmcliptranslator.translation")


class TranslationError(RuntimeError):
    """Raised when the translation service cannot complete a request."""


class TransportError(TranslationError):
    """The endpoint could not be reached or answered with a non-200 status."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ProtocolError(TranslationError):
    """The response body does not have the chat-completions shape."""


class EmptyResponseError(TranslationError):
    """The response was well formed but carried no translated text."""


class ConfigurationError(TranslationError):
    """The configured endpoint cannot be turned into a request URL."""


ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
_ROLES = (ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT)


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"Unsupported chat role: {self.role!r}")

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ModelParameters:
    temperature: float = 0.0
    max_tokens: int = 1024
    tool_choice: str = "none"
    enable_thinking: bool = False
    extra_flags: Mapping[str, Any] = field(default_factory=dict)

    # Streaming output is not supported; the body always asks for one reply.
    stream: bool = field(default=False, init=False)


@dataclass(frozen=True)
class Endpoint:
    """Concrete request target resolved from the configured connection mode."""

    url: str
    api_key: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class TranslationResult:
    source_language: str
    target_language: str
    text: str
    original: str = ""
    run_id: int = 0


@dataclass(frozen=True)
class ErrorResult:
    """Failed run, rendered through the same channel as a translation."""

    kind: str
    message: str
    original: str = ""
    run_id: int = 0

    @property
    def text(self) -> str:
        return f"⚠ {self.kind}: {self.message}"


# ---------------------------------------------------------------------------
# Sanitization

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_THINK_TAG = re.compile(r"</?think>", re.IGNORECASE)


def sanitize_model_output(text: str) -> str:
    """Strip ``<think>`` reasoning blocks and stray tags, then trim whitespace.

    Complete blocks are removed first, each one individually, so text between
    two blocks survives. A second pass drops any unmatched opening or closing
    tag left over by a reply that was cut off by the token limit.
    """

    cleaned = _THINK_BLOCK.sub("", text)
    cleaned = _THINK_TAG.sub("", cleaned)
    return cleaned.strip()


# ---------------------------------------------------------------------------
# Prompt construction

LANGUAGE_NAMES = {
    "en": "English",
    "ru": "Russian",
    "uk": "Ukrainian",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "ja": "Japanese",
    "zh": "Chinese",
    "ko": "Korean",
}

DEFAULT_FEW_SHOT_EXAMPLES: Tuple[Dict[str, str], ...] = (
    {
        "ru": "Не всегда все зависит от нас самих, бывает, мы оказываемся не в то время не в том месте",
        "en": "Not everything depends on us, sometimes we find ourselves at the wrong place at the wrong time.",
    },
    {"en": "Hello, how are you?", "ru": "Привет, как дела?"},
    {"en": "Can you translate this text quickly?", "ru": "Можешь быстро перевести этот текст?"},
    {"en": "word", "ru": "слово"},
    {"ru": "Что ещё нужно проверить", "en": "What else needs to be checked"},
    {"ru": "Привет! Рад тебя видеть на своём канале :)", "en": "Hello! Nice to see you on my channel :)"},
)


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def load_few_shot_examples(path: Path) -> Optional[List[Dict[str, str]]]:
    """Read a list of ``{language code: sentence}`` objects from ``path``.

    Returns ``None`` when the file is missing or malformed so the caller can
    fall back to the bundled examples.
    """

    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Could not read few-shot examples from %s: %s", path, exc)
        return None
    if not isinstance(data, list):
        logger.warning("Few-shot examples file %s must contain a JSON list", path)
        return None

    examples: List[Dict[str, str]] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        examples.append(
            {
                str(code).lower(): sentence
                for code, sentence in entry.items()
                if isinstance(sentence, str)
            }
        )
    return examples


class PromptBuilder:
    """Build the ordered chat transcript sent for a single translation."""

    def __init__(self, examples: Optional[Sequence[Mapping[str, str]]] = None) -> None:
        if examples is None:
            examples = DEFAULT_FEW_SHOT_EXAMPLES
        self._examples = tuple(dict(example) for example in examples)

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "PromptBuilder":
        if path is None:
            return cls()
        return cls(load_few_shot_examples(path))

    def system_prompt(self, source: str, target: str) -> str:
        source_name = language_name(source)
        target_name = language_name(target)
        return (
            "You are a bilingual translation assistant. "
            f"Always translate the user's message from {source_name} to {target_name}.\n"
            "It can be a single character, word, phrase or large text.\n"
            "Rules:\n"
            "1. Preserve meaning, tone, punctuation, and formatting.\n"
            "2. Output ONLY the translated text without additional commentary.\n"
            f"3. If the user's message is {source_name} text, translate it into {target_name}.\n"
            f"4. If the user's message is {target_name} text, translate it into {source_name}.\n"
            "/no_think"
        )

    def few_shot_messages(self, source: str, target: str) -> List[ChatMessage]:
        messages: List[ChatMessage] = []
        for example in self._examples:
            source_text = example.get(source)
            target_text = example.get(target)
            if source_text is None or target_text is None:
                continue
            messages.append(ChatMessage(ROLE_USER, source_text))
            messages.append(ChatMessage(ROLE_ASSISTANT, target_text))
        return messages

    def build(self, text: str, source: str, target: str) -> List[ChatMessage]:
        messages = [ChatMessage(ROLE_SYSTEM, self.system_prompt(source, target))]
        messages.extend(self.few_shot_messages(source, target))
        messages.append(ChatMessage(ROLE_USER, text))
        return messages


# ---------------------------------------------------------------------------
# HTTP client

Opener = Callable[..., Any]


class ChatCompletionsClient:
    """Client for any OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        endpoint: Endpoint,
        parameters: Optional[ModelParameters] = None,
        *,
        timeout: float = 30.0,
        opener: Optional[Opener] = None,
    ) -> None:
        self.endpoint = endpoint
        self.parameters = parameters or ModelParameters()
        self.timeout = timeout
        self._opener = opener or urllib.request.urlopen

    def build_payload(self, messages: Sequence[ChatMessage]) -> Dict[str, Any]:
        params = self.parameters
        payload: Dict[str, Any] = dict(params.extra_flags)
        payload.update(
            temperature=params.temperature,
            max_tokens=params.max_tokens,
            stream=params.stream,
            tool_choice=params.tool_choice,
            enable_thinking=params.enable_thinking,
        )
        if self.endpoint.model:
            payload["model"] = self.endpoint.model
        payload["messages"] = [message.as_dict() for message in messages]
        return payload

    def build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = (self.endpoint.api_key or "").strip()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def send(self, messages: Sequence[ChatMessage]) -> str:
        """POST ``messages`` once and return the sanitized reply text."""

        body = json.dumps(self.build_payload(messages), ensure_ascii=False).encode("utf-8")
        request = urllib.request.Request(
            self.endpoint.url,
            data=body,
            headers=self.build_headers(),
            method="POST",
        )
        logger.debug("POST %s (%d messages, %d bytes)", self.endpoint.url, len(messages), len(body))
        payload = self._post(request)
        return self.extract_answer(payload)

    def _post(self, request: urllib.request.Request) -> bytes:
        url = self.endpoint.url
        try:
            with self._opener(request, timeout=self.timeout) as response:
                status = getattr(response, "status", None)
                if status is None:
                    status = response.getcode()
                if status != 200:
                    raise TransportError(
                        f"The endpoint {url} returned status {status}", status=status
                    )
                return response.read()
        except urllib.error.HTTPError as exc:
            raise TransportError(
                f"The endpoint {url} returned status {exc.code}", status=exc.code
            ) from exc
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, socket.timeout):
                raise TransportError(f"Request to {url} timed out") from exc
            raise TransportError(f"The endpoint {url} is not reachable: {exc.reason}") from exc
        except socket.timeout as exc:
            raise TransportError(f"Request to {url} timed out") from exc
        except OSError as exc:
            raise TransportError(f"The endpoint {url} is not reachable: {exc}") from exc

    @staticmethod
    def extract_answer(payload: bytes) -> str:
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProtocolError("Invalid JSON in language model response") from exc

        if not isinstance(data, dict):
            raise ProtocolError("Language model response is not a JSON object")
        choices = data.get("choices")
        if not isinstance(choices, list):
            raise ProtocolError("Language model response has no 'choices' list")
        if not choices:
            raise EmptyResponseError("Empty response from language model")

        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            raise ProtocolError("First choice in language model response has no message")
        content = message.get("content")
        if content is None:
            raise EmptyResponseError("Empty response from language model")
        if not isinstance(content, str):
            raise ProtocolError("Message content in language model response is not text")

        cleaned = sanitize_model_output(content)
        if not cleaned:
            raise EmptyResponseError("Language model returned only reasoning output")
        return cleaned


class TranslationService:
    """Resolve the language pair, prompt the model and wrap the reply."""

    def __init__(
        self,
        client: ChatCompletionsClient,
        detector: LanguageDetector,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        self.client = client
        self.detector = detector
        self.prompt_builder = prompt_builder or PromptBuilder()

    def translate(self, text: str, *, run_id: int = 0) -> TranslationResult:
        source, target = self.detector.determine_direction(text)
        logger.info("Translating %d characters %s -> %s", len(text), source, target)
        messages = self.prompt_builder.build(text, source, target)
        translated = self.client.send(messages)
        return TranslationResult(
            source_language=source,
            target_language=target,
            text=translated,
            original=text,
            run_id=run_id,
        )
