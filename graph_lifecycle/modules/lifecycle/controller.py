"""
Lifecycle Controller: sequences a full run against one store.

    open -> provision schema -> seed -> (pace, read) ->
    (pace, update, read) x N -> delete -> read -> close

Schema, seed, update and delete failures are logged and the run moves on.
Any other failure ends the run early. The session is closed either way.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from graph_lifecycle.common.config_validator import StoreConfig
from graph_lifecycle.common.errors import SchemaConflictError, StoreConnectionError, WriteError
from graph_lifecycle.common.logger import LogContext, logger
from graph_lifecycle.db.session import StoreSession
from graph_lifecycle.modules.lifecycle.crud_executor import CrudExecutor, DeleteResult
from graph_lifecycle.modules.lifecycle.gods_dataset import gods_workload
from graph_lifecycle.modules.lifecycle.idempotency import IdempotencyCheck
from graph_lifecycle.modules.lifecycle.pacing import pacing_from_config
from graph_lifecycle.modules.lifecycle.query_executor import QueryExecutor, ReadReport
from graph_lifecycle.modules.lifecycle.schema_provisioner import SchemaProvisioner
from graph_lifecycle.modules.lifecycle.seed_loader import SeedLoader
from graph_lifecycle.modules.lifecycle.workload import Workload


class LifecycleState(Enum):
    CLOSED = "closed"
    OPENING = "opening"
    SCHEMA_READY = "schema_ready"
    SEEDED = "seeded"
    CYCLING = "cycling"
    DRAINING = "draining"


@dataclass
class RunReport:
    run_id: str
    completed: bool = False
    schema_created: Optional[bool] = None
    seeded: Optional[bool] = None
    updates: List[Optional[int]] = field(default_factory=list)
    deleted: Optional[DeleteResult] = None
    reads: List[ReadReport] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    states: List[LifecycleState] = field(default_factory=list)


class LifecycleController:

    def __init__(self, config: StoreConfig, workload: Optional[Workload] = None,
                 pace: Optional[Callable[[], Any]] = None, cycles: Optional[int] = None,
                 session_factory: Callable[[StoreConfig], StoreSession] = StoreSession.open,
                 schema_check: Optional[IdempotencyCheck] = None,
                 seed_check: Optional[IdempotencyCheck] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.workload = workload
        self.pace = pace or pacing_from_config(config)
        self.cycles = config.cycles if cycles is None else cycles
        self.session_factory = session_factory
        self.schema_check = schema_check
        self.seed_check = seed_check
        self.clock = clock
        self.state = LifecycleState.CLOSED
        self._report: Optional[RunReport] = None

    def _transition(self, state: LifecycleState) -> None:
        logger.debug(f"lifecycle: {self.state.value} -> {state.value}")
        self.state = state
        if self._report is not None:
            self._report.states.append(state)

    def _contained(self, stage: str, operation: Callable[[], Any]) -> Any:
        """Run a write stage; its failure is logged and does not stop the run."""
        with LogContext(stage=stage):
            try:
                return operation()
            except (SchemaConflictError, WriteError) as e:
                logger.exception(f"✗ {stage} failed: {str(e)}")
                self._report.errors.append(f"{stage}: {e}")
                return None

    def _close(self, session: StoreSession) -> None:
        try:
            session.close()
        except Exception as e:
            logger.exception(f"✗ Failed to close the session: {str(e)}")
            self._report.errors.append(f"close: {e}")

    def _timestamp(self) -> int:
        return int(self.clock() * 1000)

    def run(self) -> RunReport:
        """
        Execute one full lifecycle.

        Raises:
            StoreConnectionError: Only when the session cannot be opened
        """
        report = self._report = RunReport(run_id=uuid.uuid4().hex[:12])
        session = None
        with LogContext(run_id=report.run_id):
            try:
                self._transition(LifecycleState.OPENING)
                session = self.session_factory(self.config)
                workload = self.workload or gods_workload(session.features.supports_geoshape)
                queries = QueryExecutor(session)
                crud = CrudExecutor(session)

                report.schema_created = self._contained(
                    "schema", SchemaProvisioner(session, workload.schema, self.schema_check).provision
                )
                self._transition(LifecycleState.SCHEMA_READY)

                report.seeded = self._contained(
                    "seed", SeedLoader(session, workload.dataset, self.seed_check).load
                )
                self._transition(LifecycleState.SEEDED)

                with LogContext(stage="read"):
                    self.pace()
                    report.reads.append(queries.read_report(workload.reads))

                self._transition(LifecycleState.CYCLING)
                for cycle in range(1, self.cycles + 1):
                    stage = f"cycle-{cycle}"
                    with LogContext(stage=stage):
                        self.pace()
                        report.updates.append(self._contained(stage, lambda: crud.update(
                            workload.update_target,
                            {workload.update_key: self._timestamp()},
                            workload.update_label,
                        )))
                        report.reads.append(queries.read_report(workload.reads))

                self._transition(LifecycleState.DRAINING)
                report.deleted = self._contained(
                    "drain", lambda: crud.delete(workload.delete_target, workload.delete_label)
                )
                with LogContext(stage="drain"):
                    report.reads.append(queries.read_report(workload.reads))

                report.completed = True
            except StoreConnectionError as e:
                if session is None:
                    raise
                logger.exception(f"✗ Lost connection to the store: {str(e)}")
                report.errors.append(f"connection: {e}")
            except Exception as e:
                logger.exception(f"✗ Lifecycle run aborted in state {self.state.value}: {str(e)}")
                report.errors.append(f"{self.state.value}: {e}")
            finally:
                if session is not None:
                    self._close(session)
                self._transition(LifecycleState.CLOSED)

        logger.info(
            f"Run {report.run_id} {'completed' if report.completed else 'ended early'} "
            f"with {len(report.errors)} error(s)"
        )
        return report


def run_drop(config: StoreConfig,
             session_factory: Callable[[StoreConfig], StoreSession] = StoreSession.open) -> bool:
    """
    Open and close the store without provisioning or seeding, then drop everything in it.

    Returns:
        True if the store was dropped

    Raises:
        StoreConnectionError: Only when the session cannot be opened
    """
    with LogContext(stage="drop"):
        session = session_factory(config)
        try:
            session.close()
        except Exception as e:
            logger.exception(f"✗ Failed to close the session: {str(e)}")
        try:
            session.drop()
        except Exception as e:
            logger.exception(f"✗ Drop failed: {str(e)}")
            return False
    return True
