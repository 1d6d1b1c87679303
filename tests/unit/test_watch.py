"""Unit tests for kiro_agents.watch."""

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from kiro_agents.build import DISCARDED, UNCHANGED, WRITTEN
from kiro_agents.errors import BuildError, ConflictError
from kiro_agents.manifest import EMPTY_MCP_JSON, FileMapping, expand_mapping
from kiro_agents.targets import BuildTarget
from kiro_agents.watch import GenerationalWriter, IncrementalBuilder, SourceWatcher, _watch_directories


def _event(src_path: Path, *, event_type: str = "modified", dest_path: Path | None = None) -> SimpleNamespace:
    payload = {"is_directory": False, "src_path": str(src_path), "event_type": event_type}
    if dest_path is not None:
        payload["dest_path"] = str(dest_path)
    return SimpleNamespace(**payload)


@pytest.fixture
def builder(settings):
    builder = IncrementalBuilder(settings, BuildTarget.DEV)
    builder.rebuild_all()
    yield builder
    builder.cancel()


# ----------------------------------------------------------------------------
# Generation counters
# ----------------------------------------------------------------------------


@pytest.mark.unit
class TestGenerationalWriter:
    def test_superseded_render_is_discarded(self, tmp_path: Path) -> None:
        (tmp_path / "doc.md").write_text("x", encoding="utf-8")
        [pair] = expand_mapping(FileMapping("doc.md", "doc.md"), tmp_path, tmp_path / "out")
        writer = GenerationalWriter()
        stale = writer.begin(pair)
        fresh = writer.begin(pair)

        assert writer.commit(pair, b"new", fresh) == WRITTEN
        assert writer.commit(pair, b"old", stale) == DISCARDED
        assert pair.destination.read_bytes() == b"new"
        assert writer.generation(pair.destination) == fresh

    def test_current_render_unchanged(self, tmp_path: Path) -> None:
        (tmp_path / "doc.md").write_text("x", encoding="utf-8")
        [pair] = expand_mapping(FileMapping("doc.md", "doc.md"), tmp_path, tmp_path / "out")
        writer = GenerationalWriter()
        assert writer.commit(pair, b"a", writer.begin(pair)) == WRITTEN
        assert writer.commit(pair, b"a", writer.begin(pair)) == UNCHANGED

    def test_remove_invalidates_in_flight_render(self, tmp_path: Path) -> None:
        (tmp_path / "doc.md").write_text("x", encoding="utf-8")
        [pair] = expand_mapping(FileMapping("doc.md", "doc.md"), tmp_path, tmp_path / "out")
        writer = GenerationalWriter()
        ticket = writer.begin(pair)
        assert writer.remove(pair.destination) is False
        assert writer.commit(pair, b"late", ticket) == DISCARDED
        assert not pair.destination.exists()


# ----------------------------------------------------------------------------
# Incremental rebuilds
# ----------------------------------------------------------------------------


@pytest.mark.unit
class TestIncrementalBuilder:
    def test_cli_target_cannot_be_watched(self, settings) -> None:
        with pytest.raises(BuildError):
            IncrementalBuilder(settings, BuildTarget.CLI)

    def test_affected_mappings(self, builder) -> None:
        [mapping] = builder.affected_mappings("core/interactions/chit-chat.md")
        assert mapping.source == "core/interactions/*.md"
        assert builder.affected_mappings("core/protocols/agent-activation.md") == []

    def test_change_rebuilds_only_affected_mapping(self, builder, settings) -> None:
        source = settings.source_root / "core" / "interactions" / "chit-chat.md"
        source.write_text("# Chit Chat\n\nv{{{VERSION}}}\n", encoding="utf-8")

        assert builder.notify(source) is True
        report = builder.flush()

        out = settings.output_root(BuildTarget.DEV)
        assert report.written == [out / "interactions" / "chit-chat.md"]
        assert report.unchanged == [out / "interactions" / "interaction-styles.md"]
        assert (out / "interactions" / "chit-chat.md").read_text(encoding="utf-8") == "# Chit Chat\n\nv2.3.4\n"

    def test_relative_paths_accepted(self, builder) -> None:
        assert builder.notify("core/strict.md") is True
        report = builder.flush()
        assert [p.name for p in report.unchanged] == ["strict.md"]

    def test_unrelated_change_is_ignored(self, builder, settings) -> None:
        assert builder.notify(settings.source_root / "notes" / "todo.md") is False
        assert builder.has_pending is False
        assert builder.flush() is None

    def test_events_are_coalesced(self, builder, settings) -> None:
        builder.notify(settings.source_root / "core" / "strict.md")
        builder.notify(settings.source_root / "core" / "strict.md")
        builder.notify(settings.source_root / "core" / "aliases.md")
        report = builder.flush()
        assert sorted(p.name for p in report.unchanged) == ["aliases.md", "strict.md"]
        assert builder.has_pending is False

    def test_deleted_glob_source_removes_destination(self, builder, settings) -> None:
        source = settings.source_root / "core" / "interactions" / "chit-chat.md"
        destination = settings.output_root(BuildTarget.DEV) / "interactions" / "chit-chat.md"
        assert destination.exists()

        source.unlink()
        assert builder.notify(source, deleted=True) is True
        builder.flush()

        assert not destination.exists()
        assert (destination.parent / "interaction-styles.md").exists()

    def test_dependency_change_rebuilds_everything(self, builder, settings) -> None:
        (settings.project_root / "package.json").write_text('{"version": "9.9.9"}', encoding="utf-8")

        assert builder.notify(settings.project_root / "package.json") is True
        report = builder.flush()

        assert report.total == 6
        aliases = settings.output_root(BuildTarget.DEV) / "aliases.md"
        assert "kiro-agents v9.9.9" in aliases.read_text(encoding="utf-8")

    def test_injected_section_change_rebuilds_consumers(self, builder, settings) -> None:
        protocol = settings.source_root / "core" / "protocols" / "agent-management.md"
        protocol.write_text("# Agent Management\n\n## Agent Management Steps\n\nNew steps.\n", encoding="utf-8")

        assert builder.notify(protocol) is True
        builder.flush()

        agents = settings.output_root(BuildTarget.DEV) / "agents.md"
        assert "New steps." in agents.read_text(encoding="utf-8")

    def test_new_agent_refreshes_agent_list(self, builder, settings) -> None:
        agent = settings.project_root / ".kiro" / "agents" / "reviewer.md"
        agent.parent.mkdir(parents=True)
        agent.write_text("# Reviewer\n", encoding="utf-8")

        assert builder.notify(agent) is True
        builder.flush()

        agents = settings.output_root(BuildTarget.DEV) / "agents.md"
        assert "- reviewer" in agents.read_text(encoding="utf-8")

    def test_source_colliding_with_another_mapping_fails(self, settings) -> None:
        builder = IncrementalBuilder(settings, BuildTarget.POWER)
        builder.rebuild_all()
        destination = settings.output_root(BuildTarget.POWER) / "steering" / "agent-activation.md"
        before = destination.read_bytes()
        clash = settings.source_root / "kiro" / "steering" / "protocols" / "agent-activation.md"
        clash.write_text("# Clash\n", encoding="utf-8")
        try:
            assert builder.notify(clash) is True
            with pytest.raises(ConflictError):
                builder.flush()
        finally:
            builder.cancel()
        assert destination.read_bytes() == before

    def test_deleted_source_with_fallback_writes_default(self, settings) -> None:
        builder = IncrementalBuilder(settings, BuildTarget.POWER)
        builder.rebuild_all()
        source = settings.source_root / "kiro" / "mcp.json"
        source.unlink()
        try:
            assert builder.notify(source, deleted=True) is True
            builder.flush()
        finally:
            builder.cancel()
        assert (settings.output_root(BuildTarget.POWER) / "mcp.json").read_bytes() == EMPTY_MCP_JSON

    def test_deleted_optional_source_removes_destination(self, settings) -> None:
        icon = settings.source_root / "kiro" / "icon.png"
        icon.write_bytes(b"\x89PNG")
        builder = IncrementalBuilder(settings, BuildTarget.POWER)
        builder.rebuild_all()
        destination = settings.output_root(BuildTarget.POWER) / "icon.png"
        assert destination.exists()
        icon.unlink()
        try:
            assert builder.notify(icon, deleted=True) is True
            builder.flush()
        finally:
            builder.cancel()
        assert not destination.exists()

    def test_watch_directories_include_dependency_directories(self, builder, settings) -> None:
        agents = settings.project_root / ".kiro" / "agents"
        agents.mkdir(parents=True)
        directories = _watch_directories(builder)
        assert directories[0] == (settings.source_root, True)
        assert (settings.project_root, False) in directories
        assert (agents, False) in directories

    def test_timer_flush_logs_build_errors(self, builder) -> None:
        with (
            patch.object(builder, "flush", side_effect=BuildError("boom")),
            patch("kiro_agents.watch.logger") as mock_logger,
        ):
            builder._on_timer()
        mock_logger.error.assert_called_once()

    def test_timer_uses_executor(self, settings) -> None:
        executor = MagicMock()
        builder = IncrementalBuilder(settings, BuildTarget.DEV, executor=executor)
        builder._on_timer()
        executor.submit.assert_called_once_with(builder._flush_logged)


# ----------------------------------------------------------------------------
# File system events
# ----------------------------------------------------------------------------


@pytest.mark.unit
class TestSourceWatcher:
    def test_source_change_notifies(self, builder, settings) -> None:
        watcher = SourceWatcher(builder)
        path = settings.source_root / "core" / "strict.md"
        with patch.object(builder, "notify", return_value=True) as mock_notify:
            watcher.on_any_event(_event(path))
        mock_notify.assert_called_once_with(path, deleted=False)

    def test_directory_events_ignored(self, builder, settings) -> None:
        watcher = SourceWatcher(builder)
        event = _event(settings.source_root / "core")
        event.is_directory = True
        with patch.object(builder, "notify") as mock_notify:
            watcher.on_any_event(event)
        mock_notify.assert_not_called()

    @pytest.mark.parametrize("name", ["strict.md~", "strict.md.swp", ".#strict.md", "strict.md.tmp.123"])
    def test_editor_temp_files_ignored(self, builder, settings, name: str) -> None:
        watcher = SourceWatcher(builder)
        with patch.object(builder, "notify") as mock_notify:
            watcher.on_any_event(_event(settings.source_root / "core" / name))
        mock_notify.assert_not_called()

    def test_configured_ignore_patterns(self, builder, settings) -> None:
        watcher = SourceWatcher(builder, ignore=["drafts/"])
        with patch.object(builder, "notify") as mock_notify:
            watcher.on_any_event(_event(settings.source_root / "drafts" / "idea.md"))
        mock_notify.assert_not_called()

    def test_paths_outside_source_root_ignored(self, builder, settings) -> None:
        watcher = SourceWatcher(builder)
        with patch.object(builder, "notify") as mock_notify:
            watcher.on_any_event(_event(settings.project_root / "README.md"))
            watcher.on_any_event(_event(settings.output_root(BuildTarget.DEV) / "aliases.md"))
        mock_notify.assert_not_called()

    def test_dependency_outside_source_root_notifies(self, builder, settings) -> None:
        watcher = SourceWatcher(builder)
        package_json = settings.project_root / "package.json"
        with patch.object(builder, "notify") as mock_notify:
            watcher.on_any_event(_event(package_json))
        mock_notify.assert_called_once_with(package_json, deleted=False)

    def test_moved_event_deletes_source_and_creates_destination(self, builder, settings) -> None:
        watcher = SourceWatcher(builder)
        interactions = settings.source_root / "core" / "interactions"
        old, new = interactions / "old.md", interactions / "new.md"
        with patch.object(builder, "notify", return_value=True) as mock_notify:
            watcher.on_any_event(_event(old, event_type="moved", dest_path=new))
        assert [c.args for c in mock_notify.call_args_list] == [(old,), (new,)]
        assert [c.kwargs for c in mock_notify.call_args_list] == [{"deleted": True}, {"deleted": False}]

    def test_opened_events_ignored(self, builder, settings) -> None:
        watcher = SourceWatcher(builder)
        with patch.object(builder, "notify") as mock_notify:
            watcher.on_any_event(_event(settings.source_root / "core" / "strict.md", event_type="opened"))
        mock_notify.assert_not_called()
