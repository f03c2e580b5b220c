"""Background database creation with a single-slot handoff.

A worker thread creates one database at a time against the administrative
database and offers it through a one-item slot. The worker does not create the
next database until a caller has taken the previous one, so at most one
prepared database is ever waiting.
"""

import queue
import threading
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

import psycopg
from psycopg import sql

from ..core.errors import (
    DatabaseCreationError,
    PipelineClosedError,
    ProvisioningTimeoutError,
)
from ..core.log import get_logger, log_event, set_log_context
from ..core.time import Deadline
from ..utils.crypto import random_database_name
from .datasource import ConnectionInfo

if TYPE_CHECKING:
    from ..instances.server import EmbeddedPostgres

logger = get_logger(__name__)

# How often blocked producers and consumers look at the stop flag
_WAKEUP_INTERVAL = 0.1


@dataclass(frozen=True)
class DbInfo:
    """Outcome of one creation attempt: a database or the error that prevented it."""

    database_name: Optional[str] = None
    port: int = -1
    user: Optional[str] = None
    password: Optional[str] = None
    host: str = "localhost"
    failure: Optional[DatabaseCreationError] = None

    @classmethod
    def ok(
        cls,
        database_name: str,
        port: int,
        user: str,
        password: Optional[str] = None,
        host: str = "localhost",
    ) -> "DbInfo":
        return cls(database_name, port, user, password, host)

    @classmethod
    def failed(cls, failure: DatabaseCreationError) -> "DbInfo":
        return cls(failure=failure)

    @property
    def is_success(self) -> bool:
        return self.failure is None

    def connection_info(self) -> ConnectionInfo:
        if self.failure is not None:
            raise self.failure
        return ConnectionInfo(
            database_name=self.database_name,
            port=self.port,
            user=self.user,
            password=self.password,
            host=self.host,
        )


def create_database(conn: psycopg.Connection, name: str, owner: str) -> None:
    conn.execute(
        sql.SQL("CREATE DATABASE {} OWNER {} ENCODING 'utf8'").format(
            sql.Identifier(name), sql.Identifier(owner)
        )
    )


class PrepPipeline:
    """Mints fresh databases on one server, cloned from its prepared template."""

    def __init__(self, pg: "EmbeddedPostgres", name_length: int = 12) -> None:
        self.pg = pg
        self._name_length = name_length
        self._slot: "queue.Queue[DbInfo]" = queue.Queue(maxsize=1)
        self._taken = threading.Semaphore(0)
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "PrepPipeline":
        if self._thread is not None:
            return self
        self._thread = threading.Thread(
            target=self._run,
            name=f"cluster-{self.pg.instance_id}-preparer",
            daemon=True,
        )
        self._thread.start()
        log_event(
            logger,
            "pipeline",
            f"Preparer pipeline started for {self.pg.instance_id}",
            pipeline_event="started",
        )
        return self

    def get_next_db(self, timeout: Optional[float] = None) -> DbInfo:
        """Take the next database, blocking until the worker offers one.

        Raises:
            DatabaseCreationError: creating this database failed; cause chained
            PipelineClosedError: pipeline was closed while waiting
            ProvisioningTimeoutError: nothing arrived within ``timeout``
        """
        deadline = Deadline(timeout) if timeout is not None else None
        while True:
            if self._stopped.is_set():
                raise PipelineClosedError(
                    f"Pipeline for {self.pg.instance_id} is closed"
                )
            wait = _WAKEUP_INTERVAL
            if deadline is not None:
                if deadline.is_expired():
                    raise ProvisioningTimeoutError(
                        f"No database available after {timeout}s", timeout=timeout
                    )
                wait = min(wait, max(deadline.remaining(), 0.001))
            try:
                info = self._slot.get(timeout=wait)
            except queue.Empty:
                continue
            self._taken.release()
            if info.failure is not None:
                raise info.failure
            return info

    def close(self, timeout: float = 5.0) -> None:
        """Stop the worker; callers blocked in get_next_db get PipelineClosedError."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Preparer thread %s did not stop in time", self._thread.name)
        log_event(
            logger,
            "pipeline",
            f"Preparer pipeline closed for {self.pg.instance_id}",
            pipeline_event="closed",
        )

    def _run(self) -> None:
        set_log_context(instance_id=str(self.pg.instance_id))
        while not self._stopped.is_set():
            info = self._create_next()
            if not self._hand_off(info):
                return

    def _create_next(self) -> DbInfo:
        name = random_database_name(self._name_length)
        try:
            admin = self.pg.get_postgres_database()
            with admin.connect(autocommit=True) as conn:
                create_database(conn, name, admin.user)
        except Exception as e:
            logger.warning("Could not create database %s: %s", name, e)
            error = DatabaseCreationError(
                f"Failed to create database {name}: {e}", database_name=name
            )
            error.__cause__ = e
            return DbInfo.failed(error)
        logger.debug("Created database %s on port %s", name, admin.port)
        return DbInfo.ok(name, admin.port, admin.user, admin.password, admin.host)

    def _hand_off(self, info: DbInfo) -> bool:
        """Offer info and wait until it is taken; False once the pipeline stops."""
        while True:
            if self._stopped.is_set():
                return False
            try:
                self._slot.put(info, timeout=_WAKEUP_INTERVAL)
                break
            except queue.Full:
                continue
        while not self._taken.acquire(timeout=_WAKEUP_INTERVAL):
            if self._stopped.is_set():
                return False
        return True

    def __repr__(self) -> str:
        return f"PrepPipeline({self.pg!r})"
