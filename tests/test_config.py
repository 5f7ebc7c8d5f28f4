"""Tests for run configuration module."""

import json
from pathlib import Path

import pytest

from gcs_publish.errors import ConfigurationError
from gcs_publish.utils.config import (
    ENV_VARS,
    PublishConfig,
    parse_content_types,
    parse_metadata,
    read_env,
    split_list,
    split_target,
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every plugin variable for the duration of a test."""
    for variables in ENV_VARS.values():
        for variable in variables:
            # setenv first so monkeypatch restores any pre-existing value
            monkeypatch.setenv(variable, "")
            monkeypatch.delenv(variable)
    return monkeypatch


class TestSplitTarget:
    """Test bucket/prefix splitting."""

    def test_bucket_and_prefix(self):
        assert split_target("my-site/p") == ("my-site", "p")

    def test_split_on_first_slash_only(self):
        assert split_target("my-site/releases/v2") == ("my-site", "releases/v2")

    def test_bucket_only(self):
        assert split_target("my-site") == ("my-site", "")

    def test_trailing_slash(self):
        assert split_target("my-site/") == ("my-site", "")

    def test_empty_bucket_rejected(self):
        with pytest.raises(ConfigurationError, match="bucket"):
            split_target("/prefix")


class TestParseMetadata:
    """Test metadata decoding."""

    def test_json_object(self):
        assert parse_metadata('{"a":"1","b":2}') == {"a": "1", "b": 2}

    def test_unset(self):
        assert parse_metadata(None) == {}
        assert parse_metadata("") == {}

    def test_mapping_passthrough(self):
        assert parse_metadata({"commit": "abc"}) == {"commit": "abc"}

    def test_invalid_json(self):
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            parse_metadata("{a:1}")

    def test_non_object_json(self):
        with pytest.raises(ConfigurationError, match="JSON object"):
            parse_metadata('["a", "b"]')

    def test_non_string_non_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_metadata(42)


class TestParseContentTypes:
    """Test content type override decoding."""

    def test_json_object(self):
        assert parse_content_types('{"wasm": "application/wasm"}') == {
            "wasm": "application/wasm"
        }

    def test_unset(self):
        assert parse_content_types(None) == {}
        assert parse_content_types("") == {}

    def test_mapping_strips_leading_dot(self):
        assert parse_content_types({".md": " text/markdown "}) == {"md": "text/markdown"}

    def test_flag_entries(self):
        overrides = parse_content_types(["wasm=application/wasm", ".md=text/markdown"])

        assert overrides == {"wasm": "application/wasm", "md": "text/markdown"}

    def test_entry_without_equals(self):
        with pytest.raises(ConfigurationError, match="ext=type"):
            parse_content_types(["wasm"])

    @pytest.mark.parametrize("raw", [["=text/plain"], ["md="], {"md": 3}])
    def test_blank_or_non_string_parts(self, raw):
        with pytest.raises(ConfigurationError, match="invalid content type override"):
            parse_content_types(raw)

    def test_non_object_json(self):
        with pytest.raises(ConfigurationError, match="JSON object"):
            parse_content_types('["wasm"]')

    def test_invalid_json(self):
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            parse_content_types("wasm=application/wasm")

    def test_other_types_rejected(self):
        with pytest.raises(ConfigurationError, match="mapping"):
            parse_content_types(42)


class TestSplitList:
    """Test list setting parsing."""

    def test_comma_separated_string(self):
        assert split_list("html, css,js") == ["html", "css", "js"]

    def test_list_with_commas(self):
        assert split_list(["html,css", "js"]) == ["html", "css", "js"]

    def test_blanks_dropped(self):
        assert split_list(" , ,") == []
        assert split_list(None) == []


class TestPublishConfig:
    """Test PublishConfig construction."""

    def test_from_mapping_minimal(self):
        config = PublishConfig.from_mapping({"source": "dist", "target": "my-site"})

        assert config.source == "dist"
        assert config.bucket == "my-site"
        assert config.prefix == ""
        assert config.concurrency == 100
        assert config.max_retries == 5
        assert config.metadata == {}
        assert config.auth_key is None

    def test_from_mapping_full(self):
        config = PublishConfig.from_mapping(
            {
                "source": "dist",
                "target": "my-site/releases/v2",
                "ignore": "*.map",
                "acl": "allUsers:READER",
                "gzip": [".html", "css"],
                "cache_control": "public, max-age=300",
                "metadata": '{"commit": "abc123"}',
                "auth_key": "/secrets/sa.json",
                "concurrency": "8",
                "max_retries": 0,
            }
        )

        assert config.prefix == "releases/v2"
        assert config.target == "my-site/releases/v2"
        assert config.ignore == "*.map"
        assert config.acl == ["allUsers:READER"]
        assert config.gzip == ["html", "css"]
        assert config.cache_control == "public, max-age=300"
        assert config.metadata == {"commit": "abc123"}
        assert config.auth_key == "/secrets/sa.json"
        assert config.concurrency == 8
        assert config.max_retries == 0

    @pytest.mark.parametrize("missing", ["source", "target"])
    def test_required_settings(self, missing):
        values = {"source": "dist", "target": "my-site"}
        del values[missing]

        with pytest.raises(ConfigurationError, match=f"{missing} is required"):
            PublishConfig.from_mapping(values)

    @pytest.mark.parametrize(
        "values",
        [
            {"concurrency": 0},
            {"concurrency": "many"},
            {"max_retries": -1},
        ],
    )
    def test_invalid_limits(self, values):
        with pytest.raises(ConfigurationError):
            PublishConfig.from_mapping({"source": "dist", "target": "b", **values})

    def test_target_property_without_prefix(self):
        assert PublishConfig(source="dist", bucket="my-site").target == "my-site"

    def test_to_upload_options(self):
        config = PublishConfig(
            source="dist",
            bucket="my-site",
            prefix="p",
            acl=["allUsers:READER"],
            gzip=["html", "js"],
            cache_control="no-cache",
            metadata={"a": "1", "b": 2},
            content_types={"wasm": "application/wasm"},
        )

        options = config.to_upload_options()

        assert options.destination_prefix == "p"
        assert options.acl == ("allUsers:READER",)
        assert options.gzip_extensions == frozenset({"html", "js"})
        assert options.cache_control == "no-cache"
        assert options.metadata == {"a": "1", "b": 2}
        assert options.content_type_overrides == {"wasm": "application/wasm"}


class TestFromEnv:
    """Test environment loading."""

    def test_from_env(self, clean_env):
        clean_env.setenv("PLUGIN_SOURCE", "dist")
        clean_env.setenv("PLUGIN_TARGET", "my-site/v2")
        clean_env.setenv("PLUGIN_GZIP", "html,css")
        clean_env.setenv("PLUGIN_METADATA", json.dumps({"commit": "abc"}))
        clean_env.setenv("PLUGIN_CONCURRENCY", "16")
        clean_env.setenv("PLUGIN_CONTENT_TYPES", '{".wasm": "application/wasm"}')

        config = PublishConfig.from_env()

        assert config.bucket == "my-site"
        assert config.prefix == "v2"
        assert config.gzip == ["html", "css"]
        assert config.metadata == {"commit": "abc"}
        assert config.concurrency == 16
        assert config.content_types == {"wasm": "application/wasm"}

    def test_missing_target(self, clean_env):
        clean_env.setenv("PLUGIN_SOURCE", "dist")

        with pytest.raises(ConfigurationError, match="target is required"):
            PublishConfig.from_env()

    def test_google_key_fallback(self, clean_env):
        clean_env.setenv("GOOGLE_KEY", '{"type": "service_account"}')

        assert read_env()["auth_key"] == '{"type": "service_account"}'

    def test_plugin_auth_key_wins(self, clean_env):
        clean_env.setenv("GOOGLE_KEY", "/secrets/old.json")
        clean_env.setenv("PLUGIN_AUTH_KEY", "/secrets/new.json")

        assert read_env()["auth_key"] == "/secrets/new.json"

    def test_empty_variables_ignored(self, clean_env):
        clean_env.setenv("PLUGIN_IGNORE", "")

        assert "ignore" not in read_env()

    def test_env_file(self, clean_env, tmp_path: Path):
        env_file = tmp_path / ".env"
        env_file.write_text("PLUGIN_SOURCE=dist\nPLUGIN_TARGET=from-file\n")
        clean_env.setenv("PLUGIN_TARGET", "from-env")

        config = PublishConfig.from_env(str(env_file))

        assert config.source == "dist"
        assert config.bucket == "from-env"

    def test_missing_env_file(self, clean_env, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="env file not found"):
            read_env(str(tmp_path / "missing.env"))
