"""Tests for CLI argument parsing and settings file merging."""

import json
import os

import pytest

from args import parse_args
from cli_config import load_config_file, options_from_args
from loader.models import LoaderOptions


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("JSR_URL", raising=False)
    monkeypatch.delenv("DENO_DIR", raising=False)


class TestParseArgs:
    def test_resolve_defaults(self):
        args = parse_args(["resolve", "./main.ts"])

        assert args.COMMAND == "resolve"
        assert args.SPECIFIER == "./main.ts"
        assert args.EXTERNAL == []
        assert args.LOG_LEVEL == "WARNING"
        assert args.LOADER is None

    def test_repeated_external(self):
        args = parse_args(["load", "./a.ts", "-e", "https://a/*", "--external", "npm:*", "-o", "out.js"])

        assert args.EXTERNAL == ["https://a/*", "npm:*"]
        assert args.OUTPUT == "out.js"

    def test_link_requires_info(self):
        with pytest.raises(SystemExit):
            parse_args(["link", "chalk@5.3.0"])

    def test_invalid_choices(self):
        with pytest.raises(SystemExit):
            parse_args(["resolve", "./a.ts", "--loader", "bogus"])
        with pytest.raises(SystemExit):
            parse_args(["resolve", "./a.ts", "--node-modules-dir", "global"])


class TestLoadConfigFile:
    """Test YAML/JSON settings files."""

    def test_no_path(self):
        assert load_config_file(None) == {}

    def test_yaml_section(self, tmp_path, caplog):
        path = tmp_path / "settings.yml"
        path.write_text(
            "denoloader:\n"
            "  loader: portable\n"
            "  node-modules-dir: manual\n"
            "  external: https://cdn.example.com/*\n"
            "  colour: blue\n",
            encoding="utf-8",
        )

        with caplog.at_level("WARNING"):
            values = load_config_file(str(path))

        assert values == {
            "loader": "portable",
            "node_modules_dir": "manual",
            "external": ["https://cdn.example.com/*"],
        }
        assert "colour" in caplog.text

    def test_json_top_level(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"lock_path": "deno.lock", "request_timeout": 5}), encoding="utf-8")

        assert load_config_file(str(path)) == {"lock_path": "deno.lock", "request_timeout": 5}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config_file(str(path)) == {}

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            load_config_file(str(tmp_path / "missing.yml"))


class TestOptionsFromArgs:
    """Test precedence: settings file < environment < flags."""

    def test_defaults(self, tmp_path):
        options = options_from_args(parse_args(["resolve", "./a.ts", "--cwd", str(tmp_path)]))

        assert isinstance(options, LoaderOptions)
        assert options.cwd == str(tmp_path)
        assert options.external == []
        assert options.jsr_url == "https://jsr.io"

    def test_precedence(self, tmp_path, monkeypatch):
        settings = tmp_path / "settings.yml"
        settings.write_text(
            "jsr_url: https://file.example\n"
            "deno_dir: /from/file\n"
            "lock_path: file.lock\n"
            "external: ['file:*']\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("JSR_URL", "https://env.example")
        monkeypatch.setenv("DENO_DIR", "/from/env")

        options = options_from_args(parse_args([
            "resolve", "./a.ts", "--settings", str(settings), "--deno-dir", "/from/cli", "-e", "https://*",
        ]))

        assert options.jsr_url == "https://env.example"
        assert options.deno_dir == "/from/cli"
        assert options.lock_path == "file.lock"
        assert options.external == ["https://*"]

    def test_relative_cwd_is_made_absolute(self):
        options = options_from_args(parse_args(["resolve", "./a.ts", "--cwd", "sub"]))
        assert options.cwd == os.path.abspath("sub")

    def test_flags_map_to_fields(self):
        options = options_from_args(parse_args([
            "resolve", "./a.ts", "--loader", "native", "-c", "deno.jsonc", "--import-map", "map.json",
            "--lock", "x.lock", "--node-modules-dir", "auto", "--npm-cache-dir", "/npm",
            "--deno", "/bin/deno", "--npm-registry-url", "https://npm.example", "--timeout", "7",
        ]))

        assert options.loader == "native"
        assert options.config_path == "deno.jsonc"
        assert options.import_map_url == "map.json"
        assert options.lock_path == "x.lock"
        assert options.node_modules_dir == "auto"
        assert options.npm_cache_dir == "/npm"
        assert options.deno_executable == "/bin/deno"
        assert options.npm_registry_url == "https://npm.example"
        assert options.request_timeout == 7
