"""Tests for glob validation, expansion, and directory watching."""

import os
import threading

import pytest

from groktail.discovery import FileDiscovery, validate_glob, watch_root
from groktail.errors import ConfigError


def _touch(path):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write("x\n")


class TestValidateGlob:
    @pytest.mark.parametrize("pattern", [
        "/var/log/*.log",
        "/var/log/**/*.log",
        "/var/log/app-[0-9].log",
        "/var/log/app-[!a].log",
        "/var/log/[]].log",
        "relative/*.log",
    ])
    def test_valid(self, pattern):
        validate_glob(pattern)

    @pytest.mark.parametrize("pattern", [
        "",
        "   ",
        "/var/log/[abc.log",
        "/var/log/a**/*.log",
        "/var/log/\x00.log",
    ])
    def test_invalid(self, pattern):
        with pytest.raises(ConfigError):
            validate_glob(pattern)


class TestWatchRoot:
    def test_flat(self):
        assert watch_root("/var/log/*.log") == ("/var/log", False)

    def test_recursive(self):
        assert watch_root("/var/log/**/*.log") == ("/var/log", True)

    def test_wildcard_directory(self):
        assert watch_root("/srv/*/logs/app.log") == ("/srv", True)

    def test_relative(self):
        assert watch_root("*.log") == (".", False)


class TestDiscover:
    def test_finds_matching_files(self, tmp_path):
        _touch(str(tmp_path / "a.log"))
        _touch(str(tmp_path / "b.log"))
        _touch(str(tmp_path / "c.txt"))
        discovery = FileDiscovery([str(tmp_path / "*.log")])
        assert discovery.discover() == {str(tmp_path / "a.log"), str(tmp_path / "b.log")}

    def test_ignores_directories(self, tmp_path):
        os.makedirs(tmp_path / "dir.log")
        discovery = FileDiscovery([str(tmp_path / "*.log")])
        assert discovery.discover() == set()

    def test_missing_directory_is_not_an_error(self, tmp_path):
        discovery = FileDiscovery([str(tmp_path / "later" / "*.log")])
        assert discovery.discover() == set()
        _touch(str(tmp_path / "later" / "x.log"))
        assert discovery.discover() == {str(tmp_path / "later" / "x.log")}

    def test_recursive_glob(self, tmp_path):
        _touch(str(tmp_path / "top.log"))
        _touch(str(tmp_path / "a" / "b" / "deep.log"))
        discovery = FileDiscovery([str(tmp_path / "**" / "*.log")])
        assert discovery.discover() == {
            str(tmp_path / "top.log"),
            str(tmp_path / "a" / "b" / "deep.log"),
        }

    def test_multiple_globs_deduplicated(self, tmp_path):
        _touch(str(tmp_path / "a.log"))
        discovery = FileDiscovery([str(tmp_path / "*.log"), str(tmp_path / "a.*")])
        assert discovery.discover() == {str(tmp_path / "a.log")}

    def test_relative_paths_made_absolute(self, tmp_path, monkeypatch):
        _touch(str(tmp_path / "rel.log"))
        monkeypatch.chdir(tmp_path)
        assert FileDiscovery(["*.log"]).discover() == {str(tmp_path / "rel.log")}

    def test_no_globs(self):
        with pytest.raises(ConfigError):
            FileDiscovery([])

    def test_unknown_watch_method(self, tmp_path):
        with pytest.raises(ConfigError):
            FileDiscovery([str(tmp_path / "*.log")], watch_method="fanotify")


class TestWatch:
    def test_created_file_reported(self, tmp_path):
        created = threading.Event()
        seen = []

        def on_created(path):
            seen.append(path)
            created.set()

        discovery = FileDiscovery([str(tmp_path / "*.log")], watch_method="poll")
        discovery.watch(on_created, lambda path: None)
        try:
            _touch(str(tmp_path / "new.log"))
            assert created.wait(5)
        finally:
            assert discovery.unwatch()
        assert str(tmp_path / "new.log") in seen

    def test_missing_directory_not_watched(self, tmp_path):
        discovery = FileDiscovery([str(tmp_path / "nope" / "*.log")], watch_method="poll")
        discovery.watch(lambda path: None, lambda path: None)
        assert discovery.unwatch()
