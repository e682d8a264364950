"""
Tests for modules/lifecycle/controller.py

Full lifecycle runs against the in-memory store.
Run from project root: pytest tests/test_controller.py -v
"""

import pytest

from graph_lifecycle.common import logger as logger_module
from graph_lifecycle.common.errors import StoreConnectionError, WriteError
from graph_lifecycle.db.models import Dataset, EdgeSpec, eq
from graph_lifecycle.db.session import StoreSession
from graph_lifecycle.modules.lifecycle.controller import LifecycleController, LifecycleState, run_drop
from graph_lifecycle.modules.lifecycle.crud_executor import DeleteResult
from graph_lifecycle.modules.lifecycle.gods_dataset import GODS_DATASET, gods_workload
from graph_lifecycle.modules.lifecycle.idempotency import IdempotencyCheck
from graph_lifecycle.modules.lifecycle.pacing import NoDelay
from graph_lifecycle.modules.lifecycle.query_executor import QueryExecutor
from graph_lifecycle.modules.lifecycle.workload import Workload


def store_counts(config):
    with StoreSession.open(config) as session:
        summary = QueryExecutor(session).summary()
        return summary["vertex_count"], summary["edge_count"]


def broken_workload():
    workload = gods_workload()
    dataset = Dataset(
        name="broken gods",
        marker=GODS_DATASET.marker,
        marker_label=None,
        vertices=GODS_DATASET.vertices,
        edges=GODS_DATASET.edges + (EdgeSpec("hercules", "father", "saturn"),),
    )
    return Workload(
        schema=workload.schema,
        dataset=dataset,
        reads=workload.reads,
        update_target=workload.update_target,
        update_key=workload.update_key,
        delete_target=workload.delete_target,
    )


class FailingPace:
    """Pace callable that raises on the n-th call."""

    def __init__(self, fail_on):
        self.calls = 0
        self.fail_on = fail_on

    def __call__(self):
        self.calls += 1
        if self.calls == self.fail_on:
            raise RuntimeError("pacing broke")
        return 0.0


class TestFullRun:

    def test_fresh_store(self, store_config):
        report = LifecycleController(store_config, pace=NoDelay(), clock=lambda: 1700000000.5).run()

        assert report.completed is True
        assert report.errors == []
        assert report.schema_created is True
        assert report.seeded is True
        assert report.updates == [1, 1, 1]
        assert report.deleted == DeleteResult(vertices=1, edges=6)
        assert store_counts(store_config) == (11, 11)

    def test_states(self, store_config):
        controller = LifecycleController(store_config, pace=NoDelay(), cycles=1)
        report = controller.run()

        assert report.states == [
            LifecycleState.OPENING,
            LifecycleState.SCHEMA_READY,
            LifecycleState.SEEDED,
            LifecycleState.CYCLING,
            LifecycleState.DRAINING,
            LifecycleState.CLOSED,
        ]
        assert controller.state is LifecycleState.CLOSED

    def test_reads_follow_every_write_stage(self, store_config):
        report = LifecycleController(store_config, pace=NoDelay(), cycles=2).run()

        # after seed, after each update and after the delete
        assert len(report.reads) == 4
        assert all(read.exists for read in report.reads[:-1])
        assert report.reads[-1].exists is False
        assert report.reads[-1].neighbors == ["neptune"]

    def test_update_writes_timestamp(self, store_config):
        report = LifecycleController(store_config, pace=NoDelay(), cycles=1, clock=lambda: 1700000000.25).run()

        assert report.reads[1].lookup["ts"] == [1700000000250]

    def test_zero_cycles(self, store_config):
        report = LifecycleController(store_config, pace=NoDelay(), cycles=0).run()

        assert report.completed is True
        assert report.updates == []
        assert len(report.reads) == 2

    def test_rerun_skips_schema_and_seed(self, store_config):
        LifecycleController(store_config, pace=NoDelay()).run()

        report = LifecycleController(store_config, pace=NoDelay()).run()

        # the marker vertex survives the first run's delete
        assert report.schema_created is False
        assert report.seeded is False
        assert report.deleted == DeleteResult()
        assert store_counts(store_config) == (11, 11)

    def test_pace_called_before_each_read_stage(self, store_config):
        calls = []
        LifecycleController(store_config, pace=lambda: calls.append(1), cycles=2).run()

        assert len(calls) == 3

    def test_pacing_from_config(self, store_config):
        store_config.cycles = 1
        report = LifecycleController(store_config).run()

        assert report.completed is True
        assert report.updates == [1]


class TestFailures:

    def test_seed_failure_is_contained(self, store_config):
        report = LifecycleController(store_config, workload=broken_workload(), pace=NoDelay(), cycles=1).run()

        assert report.completed is True
        assert report.seeded is None
        assert report.updates == [0]
        assert report.deleted == DeleteResult()
        assert len(report.errors) == 1
        assert report.errors[0].startswith("seed:")
        assert store_counts(store_config) == (0, 0)

    def test_update_failure_is_contained(self, store_config):
        workload = gods_workload()
        # age is declared as an integer, a millisecond timestamp does not fit
        workload = Workload(
            schema=workload.schema,
            dataset=workload.dataset,
            reads=workload.reads,
            update_target=workload.update_target,
            update_key="age",
            delete_target=workload.delete_target,
        )

        report = LifecycleController(store_config, workload=workload, pace=NoDelay(), cycles=2).run()

        assert report.completed is True
        assert report.updates == [None, None]
        assert [error.split(":")[0] for error in report.errors] == ["cycle-1", "cycle-2"]
        assert report.deleted == DeleteResult(vertices=1, edges=6)

    def test_unexpected_failure_ends_run(self, store_config):
        controller = LifecycleController(store_config, pace=FailingPace(fail_on=2), cycles=3)

        report = controller.run()

        assert report.completed is False
        assert report.updates == []
        assert len(report.reads) == 1
        assert report.errors == ["cycling: pacing broke"]
        assert report.states[-1] is LifecycleState.CLOSED
        # seed committed before the failure
        assert store_counts(store_config) == (12, 17)

    def test_session_closed_after_failure(self, store_config):
        sessions = []

        def factory(config):
            session = StoreSession.open(config)
            sessions.append(session)
            return session

        LifecycleController(store_config, pace=FailingPace(fail_on=1), session_factory=factory).run()

        assert len(sessions) == 1
        assert not sessions[0].is_open

    def test_connection_failure_propagates(self, store_config):
        def unreachable(config):
            raise StoreConnectionError("Connection refused")

        controller = LifecycleController(store_config, pace=NoDelay(), session_factory=unreachable)

        with pytest.raises(StoreConnectionError):
            controller.run()
        assert controller.state is LifecycleState.CLOSED


class TestDrop:

    def test_drop_removes_everything(self, store_config):
        LifecycleController(store_config, pace=NoDelay(), cycles=0).run()

        assert run_drop(store_config) is True

        with StoreSession.open(store_config) as session:
            assert session.open_management().relation_types() == []
            assert QueryExecutor(session).exists(eq("name", "saturn")) is False

    def test_drop_does_not_provision(self, store_config):
        run_drop(store_config)

        assert store_counts(store_config) == (0, 0)


class RaisingCheck(IdempotencyCheck):
    """Idempotency check that fails the way a dropped store read would."""

    name = "raising check"

    def already_applied(self, handle):
        raise RuntimeError("store read failed")


def session_factory_with(patch):
    """Session factory that lets a test break one part of each opened session."""
    sessions = []

    def factory(config):
        session = StoreSession.open(config)
        patch(session)
        sessions.append(session)
        return session

    factory.sessions = sessions
    return factory


def broken_close(session):
    def close():
        raise RuntimeError("rollback on dead connection")
    session.g.close = close


class TestContainedChecksAndCleanup:

    def test_seed_check_failure_is_contained(self, store_config):
        report = LifecycleController(
            store_config, pace=NoDelay(), cycles=2, seed_check=RaisingCheck(),
        ).run()

        assert report.completed is True
        assert report.seeded is None
        assert report.errors == ["seed: Marker check for 'graph of the gods' failed: store read failed"]
        assert report.updates == [0, 0]
        assert report.deleted == DeleteResult()
        assert len(report.reads) == 4

    def test_schema_check_failure_is_contained(self, store_config):
        report = LifecycleController(
            store_config, pace=NoDelay(), cycles=1, schema_check=RaisingCheck(),
        ).run()

        assert report.completed is True
        assert report.schema_created is None
        assert report.errors[0].startswith("schema:")
        # seeding still runs under auto schema
        assert report.seeded is True
        assert report.deleted == DeleteResult(vertices=1, edges=6)

    def test_schema_open_failure_is_contained(self, store_config):
        def broken_management(session):
            def open_management():
                raise RuntimeError("management unavailable")
            session.open_management = open_management

        report = LifecycleController(
            store_config, pace=NoDelay(), cycles=1, session_factory=session_factory_with(broken_management),
        ).run()

        assert report.completed is True
        assert report.schema_created is None
        assert report.errors == ["schema: Schema provisioning failed: management unavailable"]
        assert report.seeded is True

    def test_close_failure_is_reported(self, store_config):
        factory = session_factory_with(broken_close)

        report = LifecycleController(store_config, pace=NoDelay(), cycles=1, session_factory=factory).run()

        assert report.completed is True
        assert report.errors == ["close: rollback on dead connection"]
        assert report.states[-1] is LifecycleState.CLOSED
        assert not factory.sessions[0].is_open

    def test_close_failure_after_aborted_run(self, store_config):
        report = LifecycleController(
            store_config, pace=FailingPace(fail_on=1), session_factory=session_factory_with(broken_close),
        ).run()

        assert report.completed is False
        assert report.errors == ["seeded: pacing broke", "close: rollback on dead connection"]

    def test_drop_failure_is_logged(self, store_config, caplog):
        def broken_drop(session):
            def drop():
                raise WriteError("Neo4j drop failed: index busy")
            session.drop = drop

        assert run_drop(store_config, session_factory=session_factory_with(broken_drop)) is False
        assert any("Drop failed" in record.getMessage() for record in caplog.records)

    def test_drop_after_close_failure(self, store_config):
        LifecycleController(store_config, pace=NoDelay(), cycles=0).run()

        assert run_drop(store_config, session_factory=session_factory_with(broken_close)) is True
        assert store_counts(store_config) == (0, 0)

    def test_contained_failure_alerts_once(self, store_config, monkeypatch):
        posts = []
        monkeypatch.setattr(logger_module.requests, "post", lambda url, **kwargs: posts.append(url))
        monkeypatch.setattr(logger_module.logger, "webhook_url", "https://hooks.example.com/T000")

        report = LifecycleController(store_config, workload=broken_workload(), pace=NoDelay(), cycles=0).run()

        assert len(report.errors) == 1
        assert posts == ["https://hooks.example.com/T000"]
