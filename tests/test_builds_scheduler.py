"""Tests for builds/scheduler.py module.

Covers dirty detection, dirty-set expansion, build ordering and the
sequential and parallel executors, using a fake builder.
"""

from datetime import date
from unittest.mock import patch

import pytest

from pitrac_packaging.builds.errors import (
    BuildFailed,
    BuildTimedOut,
    CacheWriteError,
    CircularOrMissingDependency,
    UnknownPackage,
)
from pitrac_packaging.builds.scheduler import (
    compute_build_order,
    expand_dirty,
    validate_dependency_graph,
    validate_requested,
)
from pitrac_packaging.packages.schema import (
    PackageSpec,
    PackageTable,
    default_package_table,
)
from pitrac_packaging.types import PackageState, RebuildReason

ALL = ["lgpio", "msgpack", "activemq", "opencv", "pitrac"]


def _table(*specs: tuple[str, tuple[str, ...]]) -> PackageTable:
    return PackageTable(
        packages=tuple(
            PackageSpec(
                name=name,
                version="1.0-1",
                sources=(f"docker/Dockerfile.{name}",),
                dependencies=deps,
            )
            for name, deps in specs
        )
    )


class TestValidateRequested:
    """Tests for validate_requested function."""

    def test_unknown_package_raises(self):
        """Should name the unknown package."""
        with pytest.raises(UnknownPackage, match="bogus") as exc_info:
            validate_requested(default_package_table(), ["pitrac", "bogus"])
        assert exc_info.value.package == "bogus"
        assert exc_info.value.code == "unknown_package"

    def test_deduplicates_preserving_order(self):
        """Should drop repeated names."""
        result = validate_requested(default_package_table(), ["pitrac", "lgpio", "pitrac"])
        assert result == ["pitrac", "lgpio"]


class TestComputeBuildOrder:
    """Tests for compute_build_order function."""

    def test_full_table_order(self):
        """Dependencies come before dependents, ties in declared order."""
        order = compute_build_order(default_package_table(), ALL)
        assert order == ALL

    def test_deterministic_for_any_input_order(self):
        """Input ordering should not affect the result."""
        table = default_package_table()
        assert compute_build_order(table, list(reversed(ALL))) == ALL
        assert compute_build_order(table, ["pitrac", "opencv"]) == ["opencv", "pitrac"]

    def test_topological_validity(self):
        """Every dependency appears at a strictly earlier index."""
        table = default_package_table()
        order = compute_build_order(table, ALL)
        for index, name in enumerate(order):
            for dep in table.get(name).dependencies:
                assert order.index(dep) < index

    def test_dependency_outside_candidates_is_satisfied(self):
        """Known packages not being rebuilt count as present."""
        assert compute_build_order(default_package_table(), ["pitrac"]) == ["pitrac"]

    def test_cycle_detected(self):
        """A two-node cycle should fail."""
        table = _table(("lgpio", ("msgpack",)), ("msgpack", ("lgpio",)))
        with pytest.raises(CircularOrMissingDependency) as exc_info:
            compute_build_order(table, ["lgpio", "msgpack"])
        assert exc_info.value.stuck == ["lgpio", "msgpack"]
        assert exc_info.value.code == "circular_dependency"

    def test_missing_dependency_detected(self):
        """A dependency absent from the table can never be satisfied."""
        table = _table(("lgpio", ()), ("pitrac", ("lgpio", "libcamera")))
        with pytest.raises(CircularOrMissingDependency, match="pitrac"):
            compute_build_order(table, ["lgpio", "pitrac"])

    def test_validate_dependency_graph_accepts_default(self):
        """The built-in table is a DAG."""
        validate_dependency_graph(default_package_table())


class TestExpandDirty:
    """Tests for expand_dirty function."""

    def test_adds_unrequested_dirty_packages(self):
        """Dirty packages are appended in declared order."""
        dirty = {"opencv", "msgpack"}
        candidates, added = expand_dirty(
            default_package_table(), ["pitrac"], lambda p: p in dirty
        )
        assert candidates == ["pitrac", "msgpack", "opencv"]
        assert added == ["msgpack", "opencv"]

    def test_empty_request_means_all(self):
        """No request evaluates every known package."""
        candidates, added = expand_dirty(default_package_table(), [], lambda p: True)
        assert candidates == ALL
        assert added == []

    def test_requested_packages_not_rechecked(self):
        """Requested packages are never reported as auto-added."""
        calls: list[str] = []

        def is_dirty(name: str) -> bool:
            calls.append(name)
            return True

        _, added = expand_dirty(default_package_table(), ["lgpio"], is_dirty)
        assert "lgpio" not in calls
        assert "lgpio" not in added


class TestNeedsRebuild:
    """Tests for IncrementalScheduler.needs_rebuild."""

    def test_no_previous_build(self, make_scheduler, builder):
        """Missing cache entry means dirty."""
        scheduler = make_scheduler(builder)
        decision = scheduler.needs_rebuild("lgpio")
        assert decision.dirty is True
        assert decision.reason == RebuildReason.NO_PREVIOUS_BUILD
        assert decision.cached_fingerprint is None

    def test_up_to_date_after_build(self, make_scheduler, builder):
        """Freshly built package is clean."""
        scheduler = make_scheduler(builder)
        scheduler.run(["lgpio"])
        decision = scheduler.needs_rebuild("lgpio")
        assert decision.dirty is False
        assert decision.reason == RebuildReason.UP_TO_DATE
        assert decision.fingerprint == decision.cached_fingerprint

    def test_sources_changed(self, make_scheduler, builder, project):
        """Editing a source marks the package dirty."""
        scheduler = make_scheduler(builder)
        scheduler.run(["lgpio"])
        (project / "docker" / "Dockerfile.lgpio").write_text("FROM debian:trixie\n")
        assert scheduler.needs_rebuild("lgpio").reason == RebuildReason.SOURCES_CHANGED

    def test_artifact_missing(self, make_scheduler, builder, settings):
        """Deleting the .deb marks the package dirty."""
        scheduler = make_scheduler(builder)
        scheduler.run(["opencv"])
        for deb in (settings.debs_dir / "arm64").glob("opencv*.deb"):
            deb.unlink()
        assert scheduler.needs_rebuild("opencv").reason == RebuildReason.ARTIFACT_MISSING

    def test_unreadable_cache_entry_forces_rebuild(self, make_scheduler, builder, settings):
        """A corrupt (empty) entry is treated as no entry."""
        scheduler = make_scheduler(builder)
        scheduler.run(["lgpio"])
        (settings.cache_dir / "lgpio.hash").write_text("")
        assert scheduler.needs_rebuild("lgpio").reason == RebuildReason.NO_PREVIOUS_BUILD

    def test_dependency_sensitivity(self, make_scheduler, builder, project, store):
        """A dependency change dirties the dependent once it is recorded."""
        scheduler = make_scheduler(builder)
        scheduler.run()
        (project / "docker" / "Dockerfile.lgpio").write_text("FROM debian:trixie\n")

        assert scheduler.needs_rebuild("lgpio").dirty is True
        assert scheduler.needs_rebuild("pitrac").dirty is False

        store.put("lgpio", scheduler.fingerprint("lgpio"))
        decision = scheduler.needs_rebuild("pitrac")
        assert decision.dirty is True
        assert decision.reason == RebuildReason.SOURCES_CHANGED


class TestSequentialRun:
    """Tests for IncrementalScheduler.run in sequential mode."""

    def test_first_run_builds_everything(self, make_scheduler, builder):
        """Empty cache builds every package in dependency order."""
        report = make_scheduler(builder).run()
        assert report.order == ALL
        assert builder.calls == ALL
        assert report.built == ALL
        assert all(state == PackageState.BUILT for state in report.states.values())

    def test_idempotent(self, make_scheduler, builder):
        """A second run with no changes builds nothing."""
        scheduler = make_scheduler(builder)
        scheduler.run()
        builder.calls.clear()

        report = scheduler.run()
        assert builder.calls == []
        assert report.skipped == ALL
        assert report.auto_added == []

    def test_changed_dependency_scenario(self, make_scheduler, builder, project):
        """Requesting pitrac with only opencv changed rebuilds both."""
        scheduler = make_scheduler(builder)
        scheduler.run()
        builder.calls.clear()
        (project / "docker" / "Dockerfile.opencv").write_text("FROM debian:trixie\n")

        report = scheduler.run(["pitrac"])

        assert report.auto_added == ["opencv"]
        assert report.order == ["opencv", "pitrac"]
        assert builder.calls == ["opencv", "pitrac"]
        assert report.states == {
            "opencv": PackageState.BUILT,
            "pitrac": PackageState.BUILT,
        }

    def test_requested_clean_package_is_skipped(self, make_scheduler, builder):
        """Clean requested packages are scheduled but not built."""
        scheduler = make_scheduler(builder)
        scheduler.run()
        builder.calls.clear()

        report = scheduler.run(["msgpack"])
        assert report.order == ["msgpack"]
        assert report.states["msgpack"] == PackageState.CLEAN
        assert builder.calls == []

    def test_single_pass_expansion_limitation(self, make_scheduler, builder, project):
        """Dependents of an auto-added package are picked up on the next run."""
        table = _table(("lgpio", ()), ("msgpack", ("lgpio",)), ("activemq", ()))
        scheduler = make_scheduler(builder, table=table)
        scheduler.run()
        builder.calls.clear()
        (project / "docker" / "Dockerfile.lgpio").write_text("FROM debian:trixie\n")

        report = scheduler.run(["activemq"])
        assert report.auto_added == ["lgpio"]
        assert report.order == ["lgpio", "activemq"]
        assert builder.calls == ["lgpio"]

        builder.calls.clear()
        report = scheduler.run()
        assert builder.calls == ["msgpack"]

    def test_unknown_package_builds_nothing(self, make_scheduler, builder):
        """Unknown names abort before any build."""
        with pytest.raises(UnknownPackage, match="opencv2"):
            make_scheduler(builder).run(["opencv2"])
        assert builder.calls == []

    def test_cycle_builds_nothing(self, make_scheduler, builder):
        """A cyclic table aborts before any build."""
        table = _table(("lgpio", ("msgpack",)), ("msgpack", ("lgpio",)))
        with pytest.raises(CircularOrMissingDependency):
            make_scheduler(builder, table=table).run(["lgpio"])
        assert builder.calls == []

    def test_fail_fast(self, make_scheduler, make_builder, store):
        """A failed build stops dependents and keeps its cache untouched."""
        table = _table(("lgpio", ()), ("msgpack", ("lgpio",)))
        builder = make_builder(fail=("lgpio",))
        scheduler = make_scheduler(builder, table=table)

        with pytest.raises(BuildFailed) as exc_info:
            scheduler.run()

        assert exc_info.value.package == "lgpio"
        assert builder.calls == ["lgpio"]
        assert store.get("lgpio") is None
        report = exc_info.value.report
        assert report is not None
        assert report.states == {
            "lgpio": PackageState.FAILED,
            "msgpack": PackageState.CANCELLED,
        }

    def test_failure_keeps_previous_fingerprint(
        self, make_scheduler, make_builder, store, project
    ):
        """Earlier successes retain their cache entries after a failure."""
        ok = make_builder()
        make_scheduler(ok).run()
        before = store.get("opencv")

        (project / "docker" / "Dockerfile.opencv").write_text("FROM debian:trixie\n")
        failing = make_builder(fail=("opencv",))
        with pytest.raises(BuildFailed):
            make_scheduler(failing).run()

        assert store.get("opencv") == before
        assert failing.calls == ["opencv"]

    def test_timeout_is_distinct_failure(self, make_scheduler, make_builder, store):
        """Timeouts surface as BuildTimedOut."""
        builder = make_builder(time_out=("lgpio",))
        scheduler = make_scheduler(builder, timeout=30)

        with pytest.raises(BuildTimedOut) as exc_info:
            scheduler.run(["lgpio"])

        assert isinstance(exc_info.value, BuildFailed)
        assert exc_info.value.code == "build_timeout"
        assert builder.timeouts["lgpio"] == 30
        assert store.get("lgpio") is None

    def test_cache_write_failure_is_fatal(self, make_scheduler, builder, store):
        """A build that cannot record its fingerprint is reported incomplete."""
        scheduler = make_scheduler(builder)
        with patch.object(
            store, "put", side_effect=CacheWriteError("lgpio", "disk full")
        ):
            with pytest.raises(CacheWriteError) as exc_info:
                scheduler.run(["lgpio"])

        assert exc_info.value.report.states["lgpio"] == PackageState.FAILED
        assert builder.calls == ["lgpio"]

    def test_date_version_resolved(self, make_scheduler, builder):
        """pitrac is built with a date-derived version."""
        scheduler = make_scheduler(builder, today=date(2025, 3, 7))
        report = scheduler.run()
        assert report.versions["pitrac"] == "2025.03.07-1"
        assert builder.versions["pitrac"] == "2025.03.07-1"
        assert builder.versions["opencv"] == "4.11.0-1"


class TestDryRun:
    """Tests for dry-run planning."""

    def test_dry_run_builds_nothing(self, make_scheduler, builder):
        """A dry run predicts states without calling the builder."""
        report = make_scheduler(builder).run(dry_run=True)
        assert report.dry_run is True
        assert builder.calls == []
        assert all(s == PackageState.DIRTY for s in report.states.values())

    def test_dry_run_predicts_dependents(self, make_scheduler, builder, project):
        """Dependents of a dirty package are predicted dirty."""
        scheduler = make_scheduler(builder)
        scheduler.run()
        builder.calls.clear()
        (project / "docker" / "Dockerfile.opencv").write_text("FROM debian:trixie\n")

        report = scheduler.run(["pitrac"], dry_run=True)
        assert report.order == ["opencv", "pitrac"]
        assert report.states["pitrac"] == PackageState.DIRTY
        assert builder.calls == []


class TestParallelRun:
    """Tests for the parallel executor."""

    def test_parallel_builds_everything(self, make_scheduler, builder):
        """Dependents still wait for their dependencies."""
        report = make_scheduler(builder, max_workers=3).run()
        assert sorted(builder.calls) == sorted(ALL)
        assert builder.calls[-1] == "pitrac"
        assert report.built == ALL

    def test_parallel_idempotent(self, make_scheduler, builder):
        """Second parallel run builds nothing."""
        scheduler = make_scheduler(builder, max_workers=4)
        scheduler.run()
        builder.calls.clear()
        scheduler.run()
        assert builder.calls == []

    def test_failure_cancels_only_dependents(self, make_scheduler, make_builder):
        """Independent branches finish; dependents are cancelled."""
        builder = make_builder(fail=("lgpio",))
        scheduler = make_scheduler(builder, max_workers=2)

        with pytest.raises(BuildFailed) as exc_info:
            scheduler.run()

        assert exc_info.value.package == "lgpio"
        assert "pitrac" not in builder.calls
        assert set(builder.calls) == {"lgpio", "msgpack", "activemq", "opencv"}
        states = exc_info.value.report.states
        assert states["lgpio"] == PackageState.FAILED
        assert states["pitrac"] == PackageState.CANCELLED
        assert states["opencv"] == PackageState.BUILT
