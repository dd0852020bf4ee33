"""Tests for PluginManager: dependency ordering, lifecycle and lookups."""

from __future__ import annotations

import itertools

import pytest

from vaultpress.interfaces.plugin import CapabilityKind, Plugin, PluginContext, PluginState
from vaultpress.issues import IssueCategory, IssueCollector
from vaultpress.plugins.defaults import NoOpTextEmbedder, PassthroughMermaidRenderer
from vaultpress.plugins.manager import (
    PluginCycleError,
    PluginInitializationError,
    PluginManager,
    topological_sort,
)

K = CapabilityKind


class RecordingPlugin(Plugin):
    """Bare plugin that records lifecycle calls into a shared list."""

    implementation = "recording"

    def __init__(self, kind: CapabilityKind, requires=(), log=None, fail_setup=False, fail_teardown=False):
        super().__init__()
        self.kind = kind
        self.requires = tuple(requires)
        self.log = log if log is not None else []
        self.fail_setup = fail_setup
        self.fail_teardown = fail_teardown
        self.seen_during_setup: dict[CapabilityKind, Plugin | None] = {}

    async def setup(self, context: PluginContext) -> None:
        for dep in self.requires:
            self.seen_during_setup[dep] = context.get_plugin(dep)
        if self.fail_setup:
            raise RuntimeError("boom")
        self.log.append(("init", self.kind))

    async def teardown(self) -> None:
        self.log.append(("dispose", self.kind))
        if self.fail_teardown:
            raise RuntimeError("teardown boom")


def _context(tmp_path) -> PluginContext:
    return PluginContext(output_dir=tmp_path)


def _positions(ordered: list[Plugin]) -> dict[CapabilityKind, int]:
    return {p.kind: i for i, p in enumerate(ordered)}


# ---------------------------------------------------------------------------
# topological_sort
# ---------------------------------------------------------------------------


class TestTopologicalSort:
    def test_dependencies_come_first(self):
        plugins = [
            RecordingPlugin(K.similarity, requires=[K.text_embedder]),
            RecordingPlugin(K.database, requires=[K.similarity, K.image_embedder]),
            RecordingPlugin(K.text_embedder),
            RecordingPlugin(K.image_embedder),
        ]
        pos = _positions(topological_sort(plugins))
        assert pos[K.text_embedder] < pos[K.similarity]
        assert pos[K.similarity] < pos[K.database]
        assert pos[K.image_embedder] < pos[K.database]

    def test_order_holds_for_every_registration_order(self):
        base = [
            RecordingPlugin(K.image_processor),
            RecordingPlugin(K.text_embedder, requires=[K.image_processor]),
            RecordingPlugin(K.similarity, requires=[K.text_embedder]),
            RecordingPlugin(K.database, requires=[K.similarity]),
        ]
        for perm in itertools.permutations(base):
            ordered = [p.kind for p in topological_sort(list(perm))]
            assert ordered == [K.image_processor, K.text_embedder, K.similarity, K.database]

    def test_independent_plugins_keep_registration_order(self):
        plugins = [RecordingPlugin(K.database), RecordingPlugin(K.image_processor)]
        assert [p.kind for p in topological_sort(plugins)] == [K.database, K.image_processor]

    def test_dependency_outside_configured_set_is_ignored(self):
        plugins = [
            RecordingPlugin(K.similarity, requires=[K.text_embedder]),
            RecordingPlugin(K.database),
        ]
        ordered = [p.kind for p in topological_sort(plugins)]
        assert ordered == [K.similarity, K.database]

    def test_cycle_names_involved_plugins(self):
        plugins = [
            RecordingPlugin(K.text_embedder, requires=[K.similarity]),
            RecordingPlugin(K.similarity, requires=[K.text_embedder]),
            RecordingPlugin(K.image_processor),
        ]
        with pytest.raises(PluginCycleError) as exc_info:
            topological_sort(plugins)
        assert exc_info.value.names == ["similarity", "text-embedder"]
        assert "similarity" in str(exc_info.value)
        assert "text-embedder" in str(exc_info.value)
        assert "image-processor" not in exc_info.value.names

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(PluginCycleError):
            topological_sort([RecordingPlugin(K.database, requires=[K.database])])

    def test_empty(self):
        assert topological_sort([]) == []


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initializes_in_dependency_order(self, tmp_path):
        log: list = []
        manager = PluginManager()
        manager.register(RecordingPlugin(K.similarity, requires=[K.text_embedder], log=log))
        manager.register(RecordingPlugin(K.text_embedder, log=log))

        await manager.initialize(_context(tmp_path))

        assert log == [("init", K.text_embedder), ("init", K.similarity)]
        assert manager.initialization_order == [K.text_embedder, K.similarity]
        assert all(p.is_ready() for p in manager.registered)

    @pytest.mark.asyncio
    async def test_dependency_is_visible_during_setup(self, tmp_path):
        manager = PluginManager()
        embedder = RecordingPlugin(K.text_embedder)
        similarity = RecordingPlugin(K.similarity, requires=[K.text_embedder])
        manager.register(similarity)
        manager.register(embedder)

        await manager.initialize(_context(tmp_path))

        assert similarity.seen_during_setup[K.text_embedder] is embedder

    @pytest.mark.asyncio
    async def test_dispose_is_exact_reverse_of_initialization(self, tmp_path):
        log: list = []
        manager = PluginManager()
        manager.register(RecordingPlugin(K.database, requires=[K.similarity], log=log))
        manager.register(RecordingPlugin(K.similarity, requires=[K.text_embedder], log=log))
        manager.register(RecordingPlugin(K.text_embedder, log=log))
        manager.register(RecordingPlugin(K.image_processor, log=log))

        await manager.initialize(_context(tmp_path))
        init_order = [k for action, k in log if action == "init"]
        await manager.dispose()
        dispose_order = [k for action, k in log if action == "dispose"]

        assert dispose_order == list(reversed(init_order))
        assert all(p.state == PluginState.disposed for p in manager.registered)

    @pytest.mark.asyncio
    async def test_dispose_failure_is_collected_and_others_still_disposed(self, tmp_path):
        log: list = []
        issues = IssueCollector()
        manager = PluginManager(issues)
        manager.register(RecordingPlugin(K.text_embedder, log=log))
        manager.register(RecordingPlugin(K.database, log=log, fail_teardown=True))

        await manager.initialize(_context(tmp_path))
        await manager.dispose()

        assert [k for action, k in log if action == "dispose"] == [K.database, K.text_embedder]
        assert len(issues.by_category(IssueCategory.plugin_error)) == 1

    @pytest.mark.asyncio
    async def test_initialization_failure_aborts(self, tmp_path):
        log: list = []
        issues = IssueCollector()
        manager = PluginManager(issues)
        manager.register(RecordingPlugin(K.text_embedder, log=log))
        manager.register(RecordingPlugin(K.similarity, requires=[K.text_embedder], log=log, fail_setup=True))
        manager.register(RecordingPlugin(K.database, requires=[K.similarity], log=log))

        with pytest.raises(PluginInitializationError) as exc_info:
            await manager.initialize(_context(tmp_path))

        assert exc_info.value.plugin == "similarity"
        assert ("init", K.database) not in log
        assert issues.has_errors()
        # Only the plugin that finished initializing gets disposed
        await manager.dispose()
        assert [k for action, k in log if action == "dispose"] == [K.text_embedder]

    @pytest.mark.asyncio
    async def test_cycle_aborts_before_any_initialization(self, tmp_path):
        log: list = []
        manager = PluginManager()
        manager.register(RecordingPlugin(K.text_embedder, requires=[K.similarity], log=log))
        manager.register(RecordingPlugin(K.similarity, requires=[K.text_embedder], log=log))

        with pytest.raises(PluginCycleError):
            await manager.initialize(_context(tmp_path))
        assert log == []

    @pytest.mark.asyncio
    async def test_register_after_initialize_rejected(self, tmp_path):
        manager = PluginManager()
        manager.register(RecordingPlugin(K.database))
        await manager.initialize(_context(tmp_path))
        with pytest.raises(RuntimeError):
            manager.register(RecordingPlugin(K.similarity))

    def test_register_replaces_same_kind(self):
        manager = PluginManager()
        first = RecordingPlugin(K.database)
        second = RecordingPlugin(K.database)
        manager.register(first)
        manager.register(second)
        assert manager.registered == [second]


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_plugin_is_none_before_initialization(self, tmp_path):
        manager = PluginManager()
        plugin = RecordingPlugin(K.database)
        manager.register(plugin)

        assert manager.get_plugin(K.database) is None
        assert not manager.has_plugin(K.database)

        await manager.initialize(_context(tmp_path))
        assert manager.get_plugin(K.database) is plugin

        await manager.dispose()
        assert manager.get_plugin(K.database) is None

    def test_unconfigured_capability_falls_back_to_noop(self):
        manager = PluginManager()
        assert isinstance(manager.text_embedder(), NoOpTextEmbedder)
        assert isinstance(manager.mermaid_renderer(), PassthroughMermaidRenderer)

    @pytest.mark.asyncio
    async def test_wrong_type_for_capability_raises(self, tmp_path):
        manager = PluginManager()
        manager.register(RecordingPlugin(K.text_embedder))
        await manager.initialize(_context(tmp_path))
        with pytest.raises(TypeError):
            manager.text_embedder()
