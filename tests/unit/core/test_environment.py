"""Tests for devenv.core.environment module."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from devenv.config.parser import ConfigError
from devenv.config.schemas import OrganizationConfig, PluginEntry
from devenv.core.environment import Environment, UpdateResult, UpdateSummary
from devenv.core.plugin import InvalidPluginError, PluginManager
from devenv.core.status import PluginStatus
from devenv.utils.git import GitError


@pytest.fixture
def platform_environment(environment_dir: Path, write_descriptor, publish_archive) -> Environment:
    """An environment pinned to a published platform version."""
    publish_archive("1.16.3")
    write_descriptor({"organization": {"name": "Example"}, "platform": {"version": "1.16.3"}})
    return Environment.open(environment_dir)


def mock_plugin_manager() -> MagicMock:
    manager = MagicMock(spec=PluginManager)
    manager.plugin_status.side_effect = lambda entry, root: PluginStatus.drifted(
        entry, "is not a git repository."
    )
    manager.is_clean.return_value = True
    manager.install_or_update.side_effect = lambda entry, root, dry_run: [f"Clone {entry.url}"]
    return manager


class TestUpdateSummary:
    """Tests for UpdateSummary class."""

    def test_counts(self):
        summary = UpdateSummary(
            [UpdateResult("a", True), UpdateResult("b", False, refused=True)]
        )

        assert summary.success_count == 1
        assert summary.failure_count == 1
        assert summary.all_successful is False
        assert summary.refused is True

    def test_empty_summary_is_successful(self):
        assert UpdateSummary().all_successful is True


class TestOpen:
    """Tests for Environment.open()."""

    def test_missing_descriptor(self, environment_dir: Path):
        with pytest.raises(ConfigError, match="No environment file"):
            Environment.open(environment_dir)

    def test_invalid_descriptor(self, environment_dir: Path, write_descriptor):
        write_descriptor({"plugins": [{"url": "x"}]})

        with pytest.raises(ConfigError):
            Environment.open(environment_dir)

    def test_searches_upwards_from_cwd(self, environment_dir: Path, write_descriptor, monkeypatch):
        write_descriptor({})
        nested = environment_dir / "plugins" / "a"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        assert Environment.open().root == environment_dir.resolve()

    def test_no_environment_above_cwd(self, temp_dir: Path, monkeypatch):
        monkeypatch.chdir(temp_dir)

        with pytest.raises(ConfigError, match="environment.json"):
            Environment.open()


class TestCreate:
    """Tests for Environment.create()."""

    def test_writes_descriptor_and_gitignore(self, temp_dir: Path):
        path = temp_dir / "new-env"

        environment = Environment.create(
            path,
            organization=OrganizationConfig(name="Example", code="com.example"),
            platform_version="1.16.3",
        )

        data = json.loads((path / "environment.json").read_text())
        assert data == {
            "organization": {"name": "Example", "code": "com.example"},
            "platform": {"version": "1.16.3"},
            "plugins": [],
        }
        assert (path / ".gitignore").read_text() == "/Rock\n"
        assert environment.is_modified is False

    def test_refuses_non_empty_directory(self, environment_dir: Path):
        (environment_dir / "existing.txt").write_text("x")

        with pytest.raises(ConfigError, match="not empty"):
            Environment.create(environment_dir)

    def test_force_allows_non_empty_directory(self, environment_dir: Path):
        (environment_dir / "existing.txt").write_text("x")

        Environment.create(environment_dir, force=True)

        assert (environment_dir / "environment.json").exists()

    def test_dry_run_writes_nothing(self, environment_dir: Path):
        environment = Environment.create(environment_dir, platform_version="1.16.3", dry_run=True)

        assert list(environment_dir.iterdir()) == []
        assert environment.descriptor.platform.version == "1.16.3"


class TestGetStatus:
    """Tests for Environment.get_status()."""

    def test_platform_then_plugins_in_order(self, environment_dir: Path, write_descriptor):
        write_descriptor({"plugins": [{"path": "plugins/b"}, {"path": "plugins/a"}]})

        report = Environment.open(environment_dir).get_status()

        assert [item.name for item in report.items] == ["Rock", "plugins/b", "plugins/a"]
        assert report.platform.is_up_to_date is True
        assert all(p.message == "is missing a url." for p in report.plugins)

    def test_git_failure_becomes_plugin_status(self, environment_dir: Path, write_descriptor):
        write_descriptor(
            {"plugins": [{"path": "plugins/a", "url": "u"}, {"path": "plugins/b", "url": "u"}]}
        )
        manager = MagicMock(spec=PluginManager)

        def status(entry, root):
            if entry.path == "plugins/a":
                raise GitError("Git is not installed or not in PATH")
            return PluginStatus.ok(entry)

        manager.plugin_status.side_effect = status
        environment = Environment.open(environment_dir, plugin_manager=manager)

        report = environment.get_status()

        assert report.plugins[0].is_up_to_date is False
        assert report.plugins[0].message == "could not be checked with git."
        assert report.plugins[1].is_up_to_date is True
        assert environment.is_up_to_date() is False


class TestUpdatePlatform:
    """Tests for Environment.update_platform()."""

    def test_unmanaged_platform(self, environment_dir: Path, write_descriptor):
        write_descriptor({"platform": {"version": "custom"}})

        result = Environment.open(environment_dir).update_platform()

        assert result.success is True
        assert not (environment_dir / "Rock").exists()

    def test_invalid_version_raises_before_changes(
        self, environment_dir: Path, write_descriptor
    ):
        write_descriptor({"platform": {"version": "1.16"}})
        (environment_dir / "Rock").mkdir()
        (environment_dir / "Rock" / "keep.txt").write_text("x")

        with pytest.raises(ConfigError, match="not a valid version number"):
            Environment.open(environment_dir).update_platform()

        assert (environment_dir / "Rock" / "keep.txt").exists()

    def test_installs_then_up_to_date(self, platform_environment: Environment, archive_source: Path):
        first = platform_environment.update_platform(source=str(archive_source))

        assert first.success is True
        assert first.message == "was updated to 1.16.3."
        assert platform_environment.get_status().platform.is_up_to_date is True

        second = platform_environment.update_platform(source=str(archive_source))
        assert second.message == "is up to date."

    def test_dry_run_changes_nothing(self, platform_environment: Environment, archive_source: Path):
        result = platform_environment.update_platform(source=str(archive_source), dry_run=True)

        assert result.success is True
        assert result.dry_run is True
        assert result.message == "would be updated to 1.16.3."
        assert any(action.startswith("Install Rock 1.16.3") for action in result.actions)
        assert not platform_environment.platform_root.exists()

    def test_refuses_modified_installation(
        self, platform_environment: Environment, archive_source: Path, publish_archive
    ):
        platform_environment.update_platform(source=str(archive_source))
        web_config = platform_environment.platform_root / "RockWeb" / "web.config"
        web_config.write_text("local edit")
        publish_archive("1.16.3")

        result = platform_environment.update_platform(source=str(archive_source))

        assert result.success is False
        assert result.refused is True
        assert web_config.read_text() == "local edit"

    def test_force_reinstalls_and_preserves_local_files(
        self, platform_environment: Environment, archive_source: Path
    ):
        platform_environment.update_platform(source=str(archive_source))
        root = platform_environment.platform_root
        (root / "RockWeb" / "web.config").write_text("local edit")
        (root / "RockWeb" / "stray.txt").write_text("stray")
        (root / "RockWeb" / "web.ConnectionStrings.config").write_text("<connectionStrings />")

        result = platform_environment.update_platform(source=str(archive_source), force=True)

        assert result.success is True
        assert (root / "RockWeb" / "web.config").read_text() == "<configuration />"
        assert not (root / "RockWeb" / "stray.txt").exists()
        assert (root / "RockWeb" / "web.ConnectionStrings.config").exists()
        assert "Preserve RockWeb/web.ConnectionStrings.config" in result.actions
        assert platform_environment.get_status().platform.is_up_to_date is True


class TestUpdatePlugins:
    """Tests for Environment.update_plugins()."""

    def test_nothing_to_do(self, environment_dir: Path, write_descriptor):
        write_descriptor({})

        summary = Environment.open(environment_dir).update_plugins()

        assert summary.results == []
        assert summary.all_successful is True

    def test_updates_out_of_date_plugins(self, environment_dir: Path, write_descriptor):
        write_descriptor(
            {"plugins": [{"path": "plugins/a", "url": "https://example.com/a.git"}]}
        )
        manager = mock_plugin_manager()

        summary = Environment.open(environment_dir, plugin_manager=manager).update_plugins()

        assert [r.name for r in summary.results] == ["plugins/a"]
        assert summary.results[0].actions == ["Clone https://example.com/a.git"]
        assert summary.all_successful is True

    def test_unclean_plugin_blocks_all_updates(self, environment_dir: Path, write_descriptor):
        write_descriptor({"plugins": [{"path": "plugins/a", "url": "a"}, {"path": "plugins/b", "url": "b"}]})
        manager = mock_plugin_manager()
        manager.is_clean.side_effect = lambda entry, root: entry.path != "plugins/b"

        summary = Environment.open(environment_dir, plugin_manager=manager).update_plugins()

        assert summary.refused is True
        assert [r.name for r in summary.results] == ["plugins/b"]
        manager.install_or_update.assert_not_called()

    def test_force_updates_unclean_plugins(self, environment_dir: Path, write_descriptor):
        write_descriptor({"plugins": [{"path": "plugins/a", "url": "a"}]})
        manager = mock_plugin_manager()
        manager.is_clean.return_value = False

        summary = Environment.open(environment_dir, plugin_manager=manager).update_plugins(
            force=True
        )

        assert summary.all_successful is True
        manager.install_or_update.assert_called_once()

    def test_one_failure_does_not_stop_others(self, environment_dir: Path, write_descriptor):
        write_descriptor({"plugins": [{"path": "plugins/a", "url": "a"}, {"path": "plugins/b", "url": "b"}]})
        manager = mock_plugin_manager()

        def install(entry, root, dry_run):
            if entry.path == "plugins/a":
                raise GitError("Git command failed: git clone a")
            return ["Clone b"]

        manager.install_or_update.side_effect = install

        summary = Environment.open(environment_dir, plugin_manager=manager).update_plugins()

        assert [(r.name, r.success) for r in summary.results] == [
            ("plugins/a", False),
            ("plugins/b", True),
        ]

    def test_dry_run_is_passed_through(self, environment_dir: Path, write_descriptor):
        write_descriptor({"plugins": [{"path": "plugins/a", "url": "a"}]})
        manager = mock_plugin_manager()

        summary = Environment.open(environment_dir, plugin_manager=manager).update_plugins(
            dry_run=True
        )

        assert summary.results[0].message == "would be updated."
        assert manager.install_or_update.call_args.args[2] is True


class TestUpdate:
    """Tests for Environment.update()."""

    def test_stops_after_failed_platform_update(
        self, platform_environment: Environment, archive_source: Path
    ):
        platform_environment.update_platform(source=str(archive_source))
        (platform_environment.platform_root / "RockWeb" / "web.config").write_text("edit")
        platform_environment.add_plugin("plugins/a", url="a")
        manager = mock_plugin_manager()
        platform_environment.plugin_manager = manager

        summary = platform_environment.update(source=str(archive_source))

        assert [r.name for r in summary.results] == ["Rock"]
        manager.install_or_update.assert_not_called()

    def test_updates_platform_and_plugins(
        self, platform_environment: Environment, archive_source: Path
    ):
        platform_environment.add_plugin("plugins/a", url="a")
        platform_environment.plugin_manager = mock_plugin_manager()

        summary = platform_environment.update(source=str(archive_source))

        assert [r.name for r in summary.results] == ["Rock", "plugins/a"]
        assert summary.all_successful is True


class TestRemovePlatform:
    """Tests for Environment.remove_platform()."""

    def test_removes_installed_files(self, platform_environment: Environment, archive_source: Path):
        platform_environment.update_platform(source=str(archive_source))
        root = platform_environment.platform_root
        (root / "RockWeb" / "App_Data" / "uploaded.png").write_bytes(b"png")

        result = platform_environment.remove_platform()

        assert result.success is True
        assert not (root / "RockWeb" / "Bin").exists()
        assert not (root / ".rock.json").exists()
        assert (root / "RockWeb" / "App_Data" / "uploaded.png").exists()

    def test_not_installed(self, platform_environment: Environment):
        result = platform_environment.remove_platform()

        assert result.success is True
        assert result.message == "is not installed, nothing to do."

    def test_refuses_without_manifest(self, platform_environment: Environment):
        root = platform_environment.platform_root
        root.mkdir()
        (root / "file.txt").write_text("x")

        result = platform_environment.remove_platform()

        assert result.refused is True
        assert (root / "file.txt").exists()

    def test_refuses_modified_installation(
        self, platform_environment: Environment, archive_source: Path
    ):
        platform_environment.update_platform(source=str(archive_source))
        (platform_environment.platform_root / "RockWeb" / "web.config").write_text("edit")

        result = platform_environment.remove_platform()

        assert result.refused is True
        assert (platform_environment.platform_root / "RockWeb" / "web.config").exists()

    def test_dry_run(self, platform_environment: Environment, archive_source: Path):
        platform_environment.update_platform(source=str(archive_source))

        result = platform_environment.remove_platform(dry_run=True)

        assert result.message == "would be removed."
        assert (platform_environment.platform_root / ".rock.json").exists()


class TestDescriptorChanges:
    """Tests for add_plugin, configure_plugin and save."""

    def test_add_plugin_and_save(self, environment_dir: Path, write_descriptor):
        write_descriptor({"custom": {"keep": True}})
        environment = Environment.open(environment_dir)

        entry = environment.add_plugin("plugins\\a", url="https://example.com/a.git")

        assert entry == PluginEntry(path="plugins/a", url="https://example.com/a.git")
        assert environment.is_modified is True
        assert environment.save() is True
        assert environment.save() is False

        data = json.loads((environment_dir / "environment.json").read_text())
        assert data["plugins"] == [{"path": "plugins/a", "url": "https://example.com/a.git"}]
        assert data["custom"] == {"keep": True}

    def test_add_duplicate_plugin(self, environment_dir: Path, write_descriptor):
        write_descriptor({"plugins": [{"path": "plugins/a"}]})

        with pytest.raises(InvalidPluginError, match="already defined"):
            Environment.open(environment_dir).add_plugin("Plugins/A")

    def test_add_invalid_path(self, environment_dir: Path, write_descriptor):
        write_descriptor({})

        with pytest.raises(InvalidPluginError):
            Environment.open(environment_dir).add_plugin("../outside")

    def test_configure_plugin(self, environment_dir: Path, write_descriptor):
        write_descriptor({"plugins": [{"path": "plugins/a", "url": "old", "branch": "main"}]})
        environment = Environment.open(environment_dir)

        entry = environment.configure_plugin("plugins/a", url="new", branch="")

        assert entry.url == "new"
        assert entry.branch is None
        assert environment.is_modified is True

    def test_configure_unknown_plugin(self, environment_dir: Path, write_descriptor):
        write_descriptor({})

        with pytest.raises(InvalidPluginError, match="not defined"):
            Environment.open(environment_dir).configure_plugin("plugins/a", url="x")

    def test_save_dry_run(self, environment_dir: Path, write_descriptor):
        descriptor_path = write_descriptor({})
        before = descriptor_path.read_text()
        environment = Environment.open(environment_dir)
        environment.add_plugin("plugins/a")

        assert environment.save(dry_run=True) is True
        assert descriptor_path.read_text() == before
        assert environment.is_modified is True
