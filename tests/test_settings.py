import json
import tempfile
import unittest
from pathlib import Path

from settings import (
    DEFAULT_SETTINGS,
    OfflineEndpointConfig,
    OnlineEndpointConfig,
    Settings,
    describe_endpoint,
    load_settings,
    parse_settings,
    write_default_settings,
)
from translation_service import ConfigurationError, Endpoint


class ParseSettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = parse_settings({})
        self.assertEqual(settings.language.codes, ("ru", "en"))
        self.assertEqual(settings.mode, "offline")
        self.assertEqual(settings.double_copy_gap, 0.3)
        self.assertEqual(settings.poll_interval, 0.05)
        self.assertIsNone(settings.max_line_length)
        self.assertFalse(settings.discard_stale_results)
        self.assertEqual(settings.parameters.tool_choice, "none")
        self.assertFalse(settings.parameters.stream)
        self.assertEqual(
            settings.endpoint(),
            Endpoint(url="http://127.0.0.1:1234/v1/chat/completions"),
        )

    def test_full_file(self) -> None:
        data = {
            "languageCodes": ["EN", "ru", "", 3],
            "languageDetectionRegexes": {"ru": "[а-яё]", "en": 5},
            "mode": "online",
            "online": {"base_url": " https://api.example.com/v1/chat/completions ", "api_key": "k", "model": "gpt"},
            "doubleCopyGapSeconds": 0.5,
            "pollIntervalSeconds": 0.02,
            "requestBody": {
                "temperature": 0.2,
                "max_tokens": 256,
                "stream": True,
                "tool_choice": "auto",
                "enable_thinking": True,
                "top_p": 0.8,
            },
            "requestTimeoutSeconds": 5,
            "maxLineLength": 60,
            "discardStaleResults": True,
        }
        settings = parse_settings(data)

        self.assertEqual(settings.language.codes, ("en", "ru"))
        self.assertEqual(dict(settings.language.patterns), {"ru": "[а-яё]"})
        self.assertEqual(settings.double_copy_gap, 0.5)
        self.assertEqual(settings.poll_interval, 0.02)
        self.assertEqual(settings.request_timeout, 5.0)
        self.assertEqual(settings.max_line_length, 60)
        self.assertTrue(settings.discard_stale_results)
        params = settings.parameters
        self.assertEqual((params.temperature, params.max_tokens, params.tool_choice), (0.2, 256, "auto"))
        self.assertTrue(params.enable_thinking)
        self.assertFalse(params.stream)
        self.assertEqual(dict(params.extra_flags), {"top_p": 0.8})
        self.assertEqual(
            settings.endpoint(),
            Endpoint(url="https://api.example.com/v1/chat/completions", api_key="k", model="gpt"),
        )

    def test_invalid_values_fall_back_to_defaults(self) -> None:
        settings = parse_settings(
            {
                "languageCodes": "en",
                "mode": "cloud",
                "doubleCopyGapSeconds": "fast",
                "pollIntervalSeconds": -1,
                "requestBody": {"temperature": "hot", "max_tokens": 0, "enable_thinking": "no"},
                "maxLineLength": 0,
                "discardStaleResults": "yes",
                "offline": {"port": "1234"},
            }
        )
        self.assertEqual(settings.language.codes, tuple(DEFAULT_SETTINGS["languageCodes"]))
        self.assertEqual(settings.mode, "offline")
        self.assertEqual(settings.double_copy_gap, 0.3)
        self.assertEqual(settings.poll_interval, 0.05)
        self.assertEqual(settings.parameters.temperature, 0.0)
        self.assertEqual(settings.parameters.max_tokens, 1024)
        self.assertFalse(settings.parameters.enable_thinking)
        self.assertIsNone(settings.max_line_length)
        self.assertFalse(settings.discard_stale_results)
        self.assertEqual(settings.offline.port, 1234)

    def test_examples_path_is_relative_to_settings_file(self) -> None:
        source = Path("/etc/llm/settings.json")
        settings = parse_settings({"fewShotExamplesFile": "examples.json"}, source_path=source)
        self.assertEqual(settings.few_shot_examples_file, Path("/etc/llm/examples.json"))

    def test_with_mode(self) -> None:
        settings = parse_settings({}).with_mode("online")
        self.assertEqual(settings.mode, "online")
        with self.assertRaises(ValueError):
            settings.with_mode("hybrid")


class EndpointResolutionTests(unittest.TestCase):
    def test_offline_path_gets_leading_slash(self) -> None:
        endpoint = OfflineEndpointConfig(port=8080, path="v1/chat/completions", model="m").resolve()
        self.assertEqual(endpoint, Endpoint(url="http://127.0.0.1:8080/v1/chat/completions", model="m"))

    def test_offline_invalid_port(self) -> None:
        with self.assertRaises(ConfigurationError):
            OfflineEndpointConfig(port=0).resolve()

    def test_online_invalid_urls(self) -> None:
        for url in ("", "   ", "not a url", "ftp://example.com/chat", "https://"):
            with self.subTest(url=url):
                with self.assertRaises(ConfigurationError):
                    OnlineEndpointConfig(base_url=url).resolve()

    def test_online_blank_key_is_not_sent(self) -> None:
        endpoint = OnlineEndpointConfig(base_url="http://localhost:9000/chat").resolve()
        self.assertIsNone(endpoint.api_key)
        self.assertIsNone(endpoint.model)

    def test_describe_endpoint_hides_configuration_errors(self) -> None:
        self.assertEqual(describe_endpoint(Settings(mode="online")), ("online", ""))


class LoadSettingsTests(unittest.TestCase):
    def test_missing_file_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = load_settings(Path(tmp) / "missing.json")
        self.assertEqual(settings.mode, "offline")

    def test_invalid_json_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            path.write_text("{broken", encoding="utf-8")
            with self.assertLogs("llmcliptranslator.settings", level="WARNING"):
                settings = load_settings(path)
        self.assertEqual(settings.language.codes, ("ru", "en"))

    def test_reads_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            path.write_text(json.dumps({"languageCodes": ["ja", "en"], "maxLineLength": 40}), encoding="utf-8")
            settings = load_settings(path)
        self.assertEqual(settings.language.codes, ("ja", "en"))
        self.assertEqual(settings.max_line_length, 40)
        self.assertEqual(settings.source_path, path)

    def test_write_default_settings_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_default_settings(Path(tmp) / "nested" / "settings.json")
            self.assertTrue(path.exists())
            self.assertEqual(load_settings(path).language.codes, ("ru", "en"))


if __name__ == "__main__":  # pragma: no cover - allows direct execution
    unittest.main()
