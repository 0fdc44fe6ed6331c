"""Tests for workspace discovery and import map resolution."""

import json

import pytest

from loader import workspace as workspace_module
from loader.errors import ResolutionError
from loader.specifiers import path_to_file_url
from loader.workspace import (
    ImportMap,
    Workspace,
    WorkspaceResolver,
    find_workspace,
    load_import_map,
    strip_jsonc_comments,
)

REFERRER = "file:///project/src/main.ts"


def _write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestStripJsoncComments:
    """Test comment and trailing-comma removal."""

    def test_comments_and_trailing_commas(self):
        text = '{\n  // line\n  "a": 1, /* block */\n  "b": [1, 2,],\n}'
        assert json.loads(strip_jsonc_comments(text)) == {"a": 1, "b": [1, 2]}

    def test_strings_are_preserved(self):
        text = '{"url": "https://example.com/a", "s": "/* not a comment */", "q": "a\\"//b"}'
        assert json.loads(strip_jsonc_comments(text)) == {
            "url": "https://example.com/a",
            "s": "/* not a comment */",
            "q": 'a"//b',
        }


class TestWorkspaceResolver:
    """Test first-pass resolution with and without an import map."""

    def test_relative_specifiers_resolve_against_referrer(self):
        resolver = WorkspaceResolver(None)
        assert resolver.resolve("./util.ts", REFERRER) == "file:///project/src/util.ts"
        assert resolver.resolve("../lib/a.ts", REFERRER) == "file:///project/lib/a.ts"
        assert resolver.resolve("/abs.ts", REFERRER) == "file:///abs.ts"

    def test_absolute_urls_pass_through(self):
        resolver = WorkspaceResolver(None)
        assert resolver.resolve("https://deno.land/x/mod.ts", REFERRER) == "https://deno.land/x/mod.ts"
        assert resolver.resolve("npm:chalk@5", REFERRER) == "npm:chalk@5"
        assert resolver.resolve("node:fs", REFERRER) == "node:fs"

    def test_unmapped_bare_specifier(self):
        resolver = WorkspaceResolver(None)
        with pytest.raises(ResolutionError, match='Relative import path "chalk" not prefixed'):
            resolver.resolve("chalk", REFERRER)

    def test_imports_exact_and_prefix(self):
        import_map = ImportMap("file:///project/deno.json", {
            "imports": {
                "chalk": "npm:chalk@5",
                "@std/": "jsr:@std/",
                "@std/path/": "https://example.com/path/",
                "~/": "./src/",
            },
        })
        resolver = WorkspaceResolver(import_map)

        assert resolver.resolve("chalk", REFERRER) == "npm:chalk@5"
        assert resolver.resolve("@std/fs/copy", REFERRER) == "jsr:@std/fs/copy"
        # longest prefix wins
        assert resolver.resolve("@std/path/join.ts", REFERRER) == "https://example.com/path/join.ts"
        assert resolver.resolve("~/util.ts", REFERRER) == "file:///project/src/util.ts"

    def test_prefix_target_must_end_with_slash(self):
        resolver = WorkspaceResolver(ImportMap("file:///project/deno.json", {"imports": {"lib/": "./lib"}}))
        with pytest.raises(ResolutionError, match="must end with '/'"):
            resolver.resolve("lib/a.ts", REFERRER)

    def test_scopes_take_precedence_for_matching_referrers(self):
        import_map = ImportMap("file:///project/import_map.json", {
            "imports": {"dep": "https://example.com/dep@1/mod.ts"},
            "scopes": {
                "./vendor/": {"dep": "https://example.com/dep@2/mod.ts"},
                "./vendor/old/": {"dep": "https://example.com/dep@0/mod.ts"},
            },
        })
        resolver = WorkspaceResolver(import_map)

        assert resolver.resolve("dep", REFERRER) == "https://example.com/dep@1/mod.ts"
        assert resolver.resolve("dep", "file:///project/vendor/a.ts") == "https://example.com/dep@2/mod.ts"
        assert resolver.resolve("dep", "file:///project/vendor/old/a.ts") == "https://example.com/dep@0/mod.ts"

    def test_closed_resolver(self):
        with WorkspaceResolver(None) as resolver:
            pass
        with pytest.raises(ResolutionError, match="closed"):
            resolver.resolve("./a.ts", REFERRER)


class TestFindWorkspace:
    """Test config discovery and the settings it exposes."""

    def test_discovers_jsonc_config_above_entry_point(self, tmp_path):
        (tmp_path / "deno.jsonc").write_text(
            '{\n  // workspace\n  "imports": {"chalk": "npm:chalk@5"},\n  "nodeModulesDir": "manual",\n}',
            encoding="utf-8",
        )
        (tmp_path / "src").mkdir()

        ws = find_workspace(str(tmp_path), ["./src/main.ts"])

        assert ws.config_path == str(tmp_path / "deno.jsonc")
        assert ws.node_modules_dir() == "manual"
        assert ws.lock_path() == str(tmp_path / "deno.lock")
        referrer = path_to_file_url(str(tmp_path / "src" / "main.ts"))
        assert ws.resolver().resolve("chalk", referrer) == "npm:chalk@5"

    def test_entry_point_dict_and_in_objects(self, tmp_path):
        _write_json(tmp_path / "app" / "deno.json", {"lock": False})

        ws = find_workspace(str(tmp_path), {"main": "./app/main.ts"})
        assert ws.config_path == str(tmp_path / "app" / "deno.json")

        ws = find_workspace(str(tmp_path), [{"in": "./app/main.ts", "out": "main"}])
        assert ws.config_path == str(tmp_path / "app" / "deno.json")
        assert ws.lock_path() is None

    def test_no_config(self, tmp_path, monkeypatch):
        monkeypatch.setattr(workspace_module, "_find_config", lambda start: None)

        ws = find_workspace(str(tmp_path))

        assert ws.config_path is None
        assert ws.root_dir == str(tmp_path)
        assert ws.lock_path() is None
        assert ws.node_modules_dir() is None
        assert ws.resolver().resolve("./a.ts", REFERRER) == "file:///project/src/a.ts"

    def test_explicit_config_path(self, tmp_path):
        _write_json(tmp_path / "conf" / "custom.json", {"lock": {"path": "locks/app.lock"}, "nodeModulesDir": True})

        ws = find_workspace(str(tmp_path), config_path="conf/custom.json")

        assert ws.lock_path() == str(tmp_path / "conf" / "locks" / "app.lock")
        assert ws.node_modules_dir() == "auto"

    @pytest.mark.parametrize("lock, expected", [
        (True, "deno.lock"),
        ("custom.lock", "custom.lock"),
        ({"frozen": True}, "deno.lock"),
    ])
    def test_lock_variants(self, tmp_path, lock, expected):
        _write_json(tmp_path / "deno.json", {"lock": lock})
        ws = find_workspace(str(tmp_path), config_path="deno.json")
        assert ws.lock_path() == str(tmp_path / expected)

    @pytest.mark.parametrize("value, expected", [
        (False, "none"),
        ("none", "none"),
        ("auto", "auto"),
        ("global", None),
    ])
    def test_node_modules_dir_variants(self, value, expected):
        ws = Workspace("/project", "/project/deno.json", {"nodeModulesDir": value})
        assert ws.node_modules_dir() == expected

    def test_config_import_map_file(self, tmp_path):
        _write_json(tmp_path / "maps" / "import_map.json", {"imports": {"util/": "../lib/util/"}})
        _write_json(tmp_path / "deno.json", {"importMap": "./maps/import_map.json", "imports": {"x": "npm:x"}})

        ws = find_workspace(str(tmp_path), config_path="deno.json")
        resolved = ws.resolver().resolve("util/a.ts", path_to_file_url(str(tmp_path / "main.ts")))

        assert resolved == path_to_file_url(str(tmp_path / "lib" / "util" / "a.ts"))

    def test_explicit_import_map_overrides_config(self, tmp_path):
        map_path = _write_json(tmp_path / "other.json", {"imports": {"chalk": "npm:chalk@4"}})
        ws = Workspace(str(tmp_path), str(tmp_path / "deno.json"), {"imports": {"chalk": "npm:chalk@5"}})

        resolver = ws.resolver(str(map_path))

        assert resolver.resolve("chalk", REFERRER) == "npm:chalk@4"

    def test_closed_workspace(self):
        with Workspace("/project", "/project/deno.json", {}) as ws:
            pass
        with pytest.raises(ResolutionError, match="closed"):
            ws.lock_path()

    def test_invalid_config(self, tmp_path):
        (tmp_path / "deno.json").write_text("{oops", encoding="utf-8")
        with pytest.raises(ResolutionError, match="Failed to parse"):
            find_workspace(str(tmp_path), config_path="deno.json")


class TestLoadImportMap:
    """Test import map loading from files and URLs."""

    def test_file_url(self, tmp_path):
        path = _write_json(tmp_path / "map.json", {"imports": {}})
        assert load_import_map(path_to_file_url(str(path))) == {"imports": {}}
        assert load_import_map(str(path)) == {"imports": {}}

    def test_remote_map(self, monkeypatch):
        calls = []

        def fake_get_json(url):
            calls.append(url)
            return 200, {"imports": {"a": "./a.ts"}}

        monkeypatch.setattr(workspace_module, "get_json", fake_get_json)

        assert load_import_map("https://example.com/map.json") == {"imports": {"a": "./a.ts"}}
        assert calls == ["https://example.com/map.json"]

    def test_remote_map_failure(self, monkeypatch):
        monkeypatch.setattr(workspace_module, "get_json", lambda url: (404, None))
        with pytest.raises(ResolutionError, match="status 404"):
            load_import_map("https://example.com/map.json")

    def test_remote_map_relative_targets(self):
        resolver = WorkspaceResolver(ImportMap("https://example.com/maps/map.json", {"imports": {"a": "./a.ts"}}))
        assert resolver.resolve("a", REFERRER) == "https://example.com/maps/a.ts"
