"""Test utilities in coderelay.utils.* and the config helpers."""
import logging
from logging.handlers import RotatingFileHandler

import pytest

from coderelay.config import DEFAULT_CONFIG, Settings, deep_merge, load_config
from coderelay.utils.llm_output import parse_json_payload, parse_tool_arguments
from coderelay.utils.logger import LOG_FILE_NAME, PACKAGE_LOGGER, build_handlers, get_logger
from coderelay.utils.path_safety import to_relative_posix, validate_path_within


# --- to_relative_posix ---

class TestToRelativePosix:
    def test_backslashes(self):
        assert to_relative_posix("src\\app.py") == "src/app.py"

    def test_leading_dot_slash(self):
        assert to_relative_posix("././src/app.py") == "src/app.py"

    def test_whitespace(self):
        assert to_relative_posix("  src/app.py \n") == "src/app.py"

    def test_empty(self):
        assert to_relative_posix("") == ""


# --- validate_path_within ---

class TestValidatePathWithin:
    def test_valid_child(self, tmp_path):
        child = tmp_path / "sub" / "file.txt"
        child.parent.mkdir(parents=True, exist_ok=True)
        child.touch()
        result = validate_path_within(child, tmp_path)
        assert result == child.resolve()

    def test_root_itself(self, tmp_path):
        assert validate_path_within(tmp_path, tmp_path) == tmp_path.resolve()

    def test_traversal_rejected(self, tmp_path):
        evil = tmp_path / ".." / "etc" / "passwd"
        with pytest.raises(ValueError, match="escapes"):
            validate_path_within(evil, tmp_path)


# --- parse_json_payload ---

class TestParseJsonPayload:
    def test_plain(self):
        assert parse_json_payload('{"path": "a.py"}') == ({"path": "a.py"}, "")

    def test_fenced(self):
        text = 'Here you go:\n```json\n{"keywords": ["auth"]}\n```\nDone.'
        assert parse_json_payload(text) == ({"keywords": ["auth"]}, "")

    def test_embedded_in_prose(self):
        data, err = parse_json_payload('sure: {"a": {"b": "}"}} trailing')
        assert err == ""
        assert data == {"a": {"b": "}"}}

    def test_expected_type(self):
        assert parse_json_payload("[1, 2]", expected_type=dict) == (None, "json_parse_failed")
        assert parse_json_payload("[1, 2]", expected_type=list) == ([1, 2], "")

    def test_existing_object(self):
        assert parse_json_payload({"a": 1}, expected_type=dict) == ({"a": 1}, "")

    def test_empty(self):
        assert parse_json_payload("   ") == (None, "empty_response")
        assert parse_json_payload(None) == (None, "empty_response")

    def test_garbage(self):
        assert parse_json_payload("not json at all") == (None, "json_parse_failed")


class TestParseToolArguments:
    def test_empty_means_no_arguments(self):
        assert parse_tool_arguments("") == ({}, "")
        assert parse_tool_arguments(None) == ({}, "")

    def test_object(self):
        assert parse_tool_arguments('{"path": "x"}') == ({"path": "x"}, "")

    def test_non_object_rejected(self):
        data, err = parse_tool_arguments('"just a string"')
        assert data is None
        assert err == "json_parse_failed"


# --- config ---

class TestConfig:
    def test_deep_merge_does_not_mutate(self):
        base = {"a": {"b": 1, "c": 2}, "d": [1]}
        merged = deep_merge(base, {"a": {"b": 10}, "d": [2]})
        assert merged == {"a": {"b": 10, "c": 2}, "d": [2]}
        assert base["a"]["b"] == 1

    def test_load_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "missing.yaml")
        assert cfg == DEFAULT_CONFIG
        assert cfg is not DEFAULT_CONFIG

    def test_load_yaml_override(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("llm:\n  model: qwen2.5-coder\nsearch:\n  context_lines: 5\n", encoding="utf-8")
        cfg = load_config(path)
        assert cfg["llm"]["model"] == "qwen2.5-coder"
        assert cfg["llm"]["retries"] == 3
        assert cfg["search"]["context_lines"] == 5

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(path)

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("CODERELAY_DEBUG", "yes")
        monkeypatch.setenv("CODERELAY_PORT", "9000")
        settings = Settings.from_env()
        assert settings.debug is True
        assert settings.port == 9000


class TestLogger:
    def test_module_loggers_share_package_handlers(self):
        first = get_logger("coderelay.indexer_demo")
        again = get_logger("coderelay.indexer_demo")
        get_logger("coderelay.other_demo")
        package = logging.getLogger(PACKAGE_LOGGER)
        assert first is again
        assert first.handlers == []
        assert len(package.handlers) == 2
        assert any(isinstance(h, RotatingFileHandler) for h in package.handlers)

    def test_outside_name_gets_handlers_once(self):
        logger = get_logger("scratch_demo")
        get_logger("scratch_demo")
        assert len(logger.handlers) == 2

    def test_build_handlers_creates_directory(self, tmp_path):
        handlers = build_handlers(tmp_path / "nested" / "logs")
        try:
            file_handler = next(h for h in handlers if isinstance(h, RotatingFileHandler))
            assert (tmp_path / "nested" / "logs").is_dir()
            assert file_handler.baseFilename.endswith(LOG_FILE_NAME)
            assert file_handler.level == logging.DEBUG
        finally:
            for handler in handlers:
                handler.close()
