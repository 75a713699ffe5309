"""Tests for settings loading and JSON preprocessing."""

import json
from pathlib import Path

import pytest

from modstage.config import (
    ConfigError,
    Settings,
    _format_syntax_error,
    load_config,
    load_settings,
    preprocess_jsonish,
    save_settings,
    validate_settings,
)
from modstage.paths import get_config_path, get_records_dir


class TestPreprocessJsonish:
    """Tests for the JSON preprocessor."""

    def test_valid_strict_json_unchanged(self):
        """Strict JSON should pass through unchanged."""
        input_text = '{"deploy_method": "copy", "data_dir": "Data"}'
        assert preprocess_jsonish(input_text) == input_text

    def test_trailing_comma_in_array(self):
        """Trailing comma in array should be replaced with space."""
        result = preprocess_jsonish("[1, 2, 3,]")
        assert result == "[1, 2, 3 ]"
        assert json.loads(result) == [1, 2, 3]

    def test_trailing_comma_in_object(self):
        result = preprocess_jsonish('{"a": 1, "b": 2,}')
        assert result == '{"a": 1, "b": 2 }'

    def test_nested_trailing_commas(self):
        result = preprocess_jsonish('{"a": [1,], "b": {"c": 2,},}')
        assert result == '{"a": [1 ], "b": {"c": 2 } }'
        assert json.loads(result) == {"a": [1], "b": {"c": 2}}

    def test_line_comment_blanked(self):
        """Comments become spaces so columns still line up."""
        input_text = '{"a": 1} // trailing note'
        result = preprocess_jsonish(input_text)
        assert len(result) == len(input_text)
        assert json.loads(result) == {"a": 1}

    def test_trailing_comma_before_comment(self):
        input_text = '{\n  "a": 1, // last one\n}'
        assert json.loads(preprocess_jsonish(input_text)) == {"a": 1}

    def test_double_slash_in_string(self):
        input_text = '{"url": "https://example.com/a,]"}'
        assert preprocess_jsonish(input_text) == input_text

    def test_escaped_quote_in_string(self):
        input_text = r'{"a": "say \"hi\", // not a comment"}'
        assert preprocess_jsonish(input_text) == input_text

    def test_multiple_trailing_commas_not_allowed(self):
        """Only the final comma is dropped; [1,,] stays invalid."""
        with pytest.raises(json.JSONDecodeError):
            json.loads(preprocess_jsonish("[1,,]"))


class TestFormatSyntaxError:
    def test_caret_points_at_column(self):
        text = '{\n  "a": 1\n  "b": 2\n}'
        with pytest.raises(json.JSONDecodeError) as exc_info:
            json.loads(text)
        message = _format_syntax_error(text, exc_info.value)
        lines = message.split("\n")
        assert lines[0].startswith("Config syntax error at line 3, col 3")
        assert lines[1] == '  "b": 2'
        assert lines[2] == "  ^"


class TestLoadConfig:
    def test_tolerant_json_from_string(self):
        assert load_config('{"data_dir": "Data",} // ok') == {"data_dir": "Data"}

    def test_from_file(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text('{"deploy_method": "copy"}')
        assert load_config(path) == {"deploy_method": "copy"}

    def test_yaml_by_suffix(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("deploy_method: hardlink\ndefault_profile: main\n")
        assert load_config(path) == {"deploy_method": "hardlink", "default_profile": "main"}

    def test_empty_yaml_is_empty_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yml"
        path.write_text("")
        assert load_config(path) == {}

    def test_forced_yaml_text(self):
        assert load_config("data_dir: data", yaml_format=True) == {"data_dir": "data"}

    def test_bad_yaml(self):
        with pytest.raises(ConfigError, match="YAML"):
            load_config("a: [1, 2", yaml_format=True)

    def test_file_not_found(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.json")

    def test_syntax_error_has_caret(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config('{"a": }')
        assert "line 1" in str(exc_info.value)
        assert "^" in str(exc_info.value)

    def test_non_object_root(self):
        with pytest.raises(ConfigError, match="must be an object"):
            load_config("[1, 2]")

    def test_invalid_type(self):
        with pytest.raises(TypeError):
            load_config(42)


class TestValidateSettings:
    def test_defaults(self):
        settings = validate_settings({})
        assert settings.deploy_method == "symlink"
        assert settings.data_dir == "Data"
        assert settings.records_dir == str(get_records_dir())
        assert settings.default_profile is None

    def test_all_fields(self):
        settings = validate_settings(
            {
                "deploy_method": "copy",
                "data_dir": "data",
                "records_dir": "/var/lib/modstage",
                "default_profile": "main",
            }
        )
        assert settings == Settings("copy", "data", "/var/lib/modstage", "main")

    def test_unknown_field(self):
        with pytest.raises(ConfigError, match="Unknown config field.*colour"):
            validate_settings({"colour": "blue"})

    def test_bad_method(self):
        with pytest.raises(ConfigError) as exc_info:
            validate_settings({"deploy_method": "teleport"})
        assert "Settings field 'deploy_method' must be one of" in str(exc_info.value)

    @pytest.mark.parametrize("data_dir", ["", "a/b", "..", "a\\b"])
    def test_bad_data_dir(self, data_dir):
        with pytest.raises(ConfigError, match="data_dir"):
            validate_settings({"data_dir": data_dir})

    def test_wrong_type(self):
        with pytest.raises(ConfigError, match="'records_dir' must be a string"):
            validate_settings({"records_dir": 3})


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, mock_config_dir):
        assert not get_config_path().exists()
        assert load_settings() == Settings()

    def test_env_var_selects_file(self, mock_config_dir):
        get_config_path().write_text('{"deploy_method": "hardlink",}')
        assert load_settings().deploy_method == "hardlink"

    def test_save_then_load(self, tmp_path: Path):
        path = tmp_path / "nested" / "config.json"
        settings = Settings(deploy_method="copy", default_profile="alt")
        save_settings(settings, path)
        assert load_settings(path) == settings
