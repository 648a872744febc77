"""Tests for configuration models."""

import tempfile
from pathlib import Path

import pytest
import yaml

from server_wrapper.errors import ConfigError
from server_wrapper.models.config import (
    DEFAULT_MIN_RESTART_INTERVAL,
    Destination,
    DirectTransform,
    GitHubEntry,
    ModrinthEntry,
    PathEntry,
    Pattern,
    SourceSet,
    Trigger,
    TriggerKind,
    UnzipTransform,
    UrlEntry,
    WrapperConfig,
    parse_entry,
    parse_transform,
)

EXAMPLE_CONFIG = """
run:
  - java -Xmx4G -jar server.jar nogui
status:
  webhook: https://discord.example/api/webhooks/1/abc
tokens:
  github: ghp_example
min_restart_interval_seconds: 60
triggers:
  startup:
  deploy:
    type: webhook
    port: 8080
destinations:
  mods:
    path: mods
    triggers: [startup, deploy]
    sources:
      release:
        fabric-api:
          url: https://cdn.example/fabric-api.jar
        sodium:
          modrinth: AANobbMI
          game_version: 1.20.1
      nightly:
        transform:
          unzip: ["*.jar", "!*-dev.jar"]
        tools:
          github: example/tools
          branch: main
          artifact: jars
  datapacks:
    path: world/datapacks
    sources:
      local:
        pack:
          path: packs/pack.zip
"""


class TestPattern:
    """Tests for Pattern parsing and matching."""

    def test_parse_include(self) -> None:
        pattern = Pattern.parse("*.jar")

        assert pattern.glob == "*.jar"
        assert not pattern.exclude
        assert str(pattern) == "*.jar"

    def test_parse_exclude(self) -> None:
        pattern = Pattern.parse("!*-dev.jar")

        assert pattern.glob == "*-dev.jar"
        assert pattern.exclude
        assert str(pattern) == "!*-dev.jar"

    @pytest.mark.parametrize("text", ["", "!", "!!"])
    def test_parse_rejects_empty(self, text: str) -> None:
        with pytest.raises(ConfigError, match="Invalid filter pattern"):
            Pattern.parse(text)

    def test_star_matches_across_directories(self) -> None:
        assert Pattern.parse("*.jar").matches("libs/nested/a.jar")
        assert Pattern.parse("**/*.jar").matches("libs/a.jar")
        assert not Pattern.parse("*.jar").matches("a.jar.txt")


class TestUnzipTransform:
    """Tests for filter evaluation."""

    def test_last_match_wins(self) -> None:
        spec = parse_transform({"unzip": ["*.jar", "!*-dev.jar"]})

        assert spec.includes("mod.jar")
        assert not spec.includes("mod-dev.jar")
        assert not spec.includes("readme.txt")

    def test_reinclusion_after_exclusion(self) -> None:
        spec = parse_transform({"unzip": ["*", "!*.txt", "LICENSE.txt"]})

        assert spec.includes("mod.jar")
        assert not spec.includes("notes.txt")
        assert spec.includes("LICENSE.txt")

    def test_only_exclusions_keep_unmatched(self) -> None:
        spec = parse_transform({"unzip": ["!*.txt"]})

        assert spec.includes("mod.jar")
        assert not spec.includes("notes.txt")

    def test_no_patterns_keep_everything(self) -> None:
        spec = parse_transform({"unzip": []})

        assert spec == UnzipTransform()
        assert spec.includes("anything/at/all.bin")

    def test_to_dict(self) -> None:
        spec = parse_transform({"unzip": ["*.jar", "!*-dev.jar"]})

        assert spec.to_dict() == {"unzip": ["*.jar", "!*-dev.jar"]}


class TestParseTransform:
    """Tests for transform parsing."""

    def test_absent_is_direct(self) -> None:
        assert parse_transform(None) == DirectTransform()
        assert parse_transform("direct") == DirectTransform()

    def test_unzip_must_be_list(self) -> None:
        with pytest.raises(ConfigError, match="must be a list"):
            parse_transform({"unzip": "*.jar"})

    def test_unknown_transform(self) -> None:
        with pytest.raises(ConfigError, match="Unknown transform"):
            parse_transform({"untar": ["*"]})


class TestParseEntry:
    """Tests for source entry parsing."""

    def test_url(self) -> None:
        entry = parse_entry("a", {"url": "https://example.com/a.jar"})

        assert entry == UrlEntry(url="https://example.com/a.jar")

    def test_github(self) -> None:
        entry = parse_entry("a", {"github": "owner/repo", "branch": "main", "workflow": "build.yml"})

        assert isinstance(entry, GitHubEntry)
        assert entry.owner == "owner"
        assert entry.name == "repo"
        assert entry.branch == "main"
        assert entry.workflow == "build.yml"
        assert entry.artifact is None

    @pytest.mark.parametrize("reference", ["owner", "owner/", "/repo", "a/b/c"])
    def test_github_malformed_reference(self, reference: str) -> None:
        with pytest.raises(ConfigError, match="Malformed GitHub reference") as exc_info:
            parse_entry("tools", {"github": reference})

        assert exc_info.value.entry == "tools"

    def test_modrinth(self) -> None:
        entry = parse_entry("sodium", {"modrinth": "AANobbMI", "game_version": "1.20.1"})

        assert entry == ModrinthEntry(project_id="AANobbMI", game_version="1.20.1")

    def test_path(self) -> None:
        assert parse_entry("p", {"path": "packs/p.zip"}) == PathEntry(path="packs/p.zip")

    def test_ambiguous_entry(self) -> None:
        with pytest.raises(ConfigError, match="exactly one"):
            parse_entry("a", {"url": "https://example.com", "path": "a"})

    def test_unknown_entry(self) -> None:
        with pytest.raises(ConfigError, match="exactly one"):
            parse_entry("a", {"ftp": "ftp://example.com"})

    def test_non_mapping(self) -> None:
        with pytest.raises(ConfigError, match="must be a mapping"):
            parse_entry("a", "https://example.com")


class TestSourceSet:
    """Tests for SourceSet model."""

    def test_transform_key_is_reserved(self) -> None:
        source = SourceSet.from_dict(
            "nightly",
            {
                "transform": {"unzip": ["*.jar"]},
                "tools": {"github": "example/tools"},
            },
        )

        assert list(source.entries) == ["tools"]
        assert isinstance(source.transform, UnzipTransform)

    def test_entry_errors_carry_source(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            SourceSet.from_dict("release", {"broken": {"nothing": 1}})

        assert exc_info.value.source == "release"
        assert exc_info.value.entry == "broken"

    def test_to_dict_roundtrip(self) -> None:
        data = {
            "transform": {"unzip": ["*.jar"]},
            "a": {"url": "https://example.com/a.jar"},
            "b": {"modrinth": "abc"},
        }

        assert SourceSet.from_dict("s", data).to_dict() == data


class TestDestination:
    """Tests for Destination model."""

    def test_default_trigger_is_startup(self) -> None:
        dest = Destination.from_dict("mods", {"path": "mods"})

        assert dest.triggers == frozenset({"startup"})

    def test_single_trigger_string(self) -> None:
        dest = Destination.from_dict("mods", {"path": "mods", "triggers": "deploy"})

        assert dest.triggers == frozenset({"deploy"})

    def test_missing_path(self) -> None:
        with pytest.raises(ConfigError, match="needs a 'path'"):
            Destination.from_dict("mods", {"sources": {}})

    def test_resolve_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir).resolve()
            dest = Destination(name="packs", path="world/datapacks")

            assert dest.resolve_path(root) == root / "world" / "datapacks"

    @pytest.mark.parametrize("path", ["", ".", "..", "../mods", "a/../..", "mods/../../etc", "/etc"])
    def test_resolve_path_rejects_escape(self, path: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            dest = Destination(name="bad", path=path)

            with pytest.raises(ConfigError) as exc_info:
                dest.resolve_path(Path(tmpdir))

            assert exc_info.value.destination == "bad"

    def test_entry_count(self) -> None:
        dest = Destination.from_dict(
            "mods",
            {
                "path": "mods",
                "sources": {
                    "a": {"x": {"url": "https://e/x"}, "y": {"url": "https://e/y"}},
                    "b": {"z": {"path": "z.jar"}},
                },
            },
        )

        assert dest.entry_count == 3


class TestTrigger:
    """Tests for Trigger model."""

    def test_default_kind(self) -> None:
        trigger = Trigger.from_dict("startup", None)

        assert trigger.kind == TriggerKind.STARTUP
        assert trigger.options == {}

    def test_webhook_keeps_options(self) -> None:
        trigger = Trigger.from_dict("deploy", {"type": "webhook", "port": 8080})

        assert trigger.kind == TriggerKind.WEBHOOK
        assert trigger.options == {"port": 8080}
        assert trigger.to_dict() == {"type": "webhook", "port": 8080}

    def test_unknown_kind(self) -> None:
        with pytest.raises(ConfigError, match="Unknown trigger type"):
            Trigger.from_dict("cron", {"type": "cron"})


class TestWrapperConfig:
    """Tests for WrapperConfig model."""

    def test_default_config(self) -> None:
        config = WrapperConfig()

        assert config.run == ["java -jar server.jar nogui"]
        assert config.min_restart_interval_seconds == DEFAULT_MIN_RESTART_INTERVAL
        assert list(config.triggers) == ["startup"]
        assert config.destinations == {}

    def test_from_dict(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            base = Path(tmpdir).resolve()
            config = WrapperConfig.from_dict(yaml.safe_load(EXAMPLE_CONFIG), base_dir=base)

            assert config.run == ["java -Xmx4G -jar server.jar nogui"]
            assert config.status_webhook == "https://discord.example/api/webhooks/1/abc"
            assert config.github_token == "ghp_example"
            assert config.min_restart_interval_seconds == 60
            assert config.root == base
            assert list(config.destinations) == ["mods", "datapacks"]
            assert config.triggers["deploy"].kind == TriggerKind.WEBHOOK

            mods = config.destinations["mods"]
            assert mods.triggers == frozenset({"startup", "deploy"})
            assert list(mods.sources) == ["release", "nightly"]
            assert list(mods.sources["release"].entries) == ["fabric-api", "sodium"]
            assert mods.sources["nightly"].entries["tools"].artifact == "jars"
            assert config.has_github_entries()

            config.validate()

    def test_run_as_single_string(self) -> None:
        config = WrapperConfig.from_dict({"run": "./start.sh"})

        assert config.run == ["./start.sh"]

    def test_relative_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            base = Path(tmpdir).resolve()
            config = WrapperConfig.from_dict({"root": "server"}, base_dir=base)

            assert config.root == base / "server"

    def test_save_and_load(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "wrapper.yaml"
            original = WrapperConfig.from_dict(yaml.safe_load(EXAMPLE_CONFIG), base_dir=Path(tmpdir))
            original.save(config_path)

            loaded = WrapperConfig.load(config_path)

            assert loaded.run == original.run
            assert loaded.destinations == original.destinations
            assert loaded.triggers == original.triggers
            assert loaded.status_webhook == original.status_webhook

    def test_token_is_not_saved(self) -> None:
        config = WrapperConfig(github_token="ghp_secret")

        assert "tokens" not in config.to_dict()
        assert "ghp_secret" not in yaml.dump(config.to_dict())

    def test_load_malformed_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "wrapper.yaml"
            config_path.write_text("run: [unclosed\n")

            with pytest.raises(ConfigError, match="Malformed config"):
                WrapperConfig.load(config_path)

    def test_load_non_mapping(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "wrapper.yaml"
            config_path.write_text("- just\n- a list\n")

            with pytest.raises(ConfigError, match="must contain a mapping"):
                WrapperConfig.load(config_path)

    def test_load_or_create_writes_default(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "wrapper.yaml"

            config = WrapperConfig.load_or_create(config_path)

            assert config_path.exists()
            assert config.root == Path(tmpdir).resolve()
            assert list(config.destinations) == ["mods"]
            entry = config.destinations["mods"].sources["jars"].entries["fabric-api"]
            assert isinstance(entry, UrlEntry)
            config.validate()

    def test_load_or_create_keeps_existing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "wrapper.yaml"
            config_path.write_text("run: ['./start.sh']\n")

            config = WrapperConfig.load_or_create(config_path)

            assert config.run == ["./start.sh"]
            assert config.destinations == {}

    def test_validate_overlapping_destinations(self) -> None:
        config = WrapperConfig.from_dict(
            {
                "destinations": {
                    "mods": {"path": "mods"},
                    "nested": {"path": "mods/extra"},
                }
            }
        )

        with pytest.raises(ConfigError, match="overlaps") as exc_info:
            config.validate()

        assert exc_info.value.destination == "nested"

    def test_validate_undeclared_trigger(self) -> None:
        config = WrapperConfig.from_dict(
            {"destinations": {"mods": {"path": "mods", "triggers": ["deploy"]}}}
        )

        with pytest.raises(ConfigError, match="undeclared trigger"):
            config.validate()

    def test_validate_empty_run(self) -> None:
        config = WrapperConfig.from_dict({"run": []})

        with pytest.raises(ConfigError, match="No commands"):
            config.validate()
