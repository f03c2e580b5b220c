"""Prepared database provider and the process-wide cluster registry.

Each distinct (preparer, server settings) pair gets one cluster: a server whose
template database was prepared once, plus a pipeline that clones fresh
databases from it. Providers with equal preparers and equal customizations
share that cluster.
"""

import threading
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Tuple, TYPE_CHECKING

from ..core.context import ApplicationContext
from ..core.errors import PreparationError
from ..core.log import get_logger
from ..utils.urls import add_credentials
from .datasource import ConnectionInfo, PgDataSource
from .pipeline import DbInfo, PrepPipeline
from .preparer import DatabasePreparer, has_value_equality

if TYPE_CHECKING:
    from ..instances.builder import EmbeddedPostgresBuilder

logger = get_logger(__name__)

BuilderCustomizer = Callable[["EmbeddedPostgresBuilder"], None]


def cluster_key(
    preparer: DatabasePreparer, builder: "EmbeddedPostgresBuilder"
) -> Tuple[DatabasePreparer, Hashable]:
    """Clusters are shared between equal preparers with equal server settings."""
    return (preparer, builder.settings_key())


class ClusterRegistry:
    """Process-wide map from cluster key to running pipeline."""

    def __init__(self) -> None:
        self._clusters: Dict[Hashable, PrepPipeline] = {}
        self._lock = threading.Lock()

    def get_or_create(
        self,
        preparer: DatabasePreparer,
        customizers: Iterable[BuilderCustomizer] = (),
        app_context: Optional[ApplicationContext] = None,
    ) -> PrepPipeline:
        """Return the pipeline for this preparer, starting and preparing a server if needed.

        Raises:
            PreparationError: the preparer failed; the new server is closed again
        """
        from ..instances.builder import EmbeddedPostgresBuilder

        ctx = app_context or ApplicationContext.default()
        builder = EmbeddedPostgresBuilder(ctx)
        for customize in customizers:
            customize(builder)
        key = cluster_key(preparer, builder)

        with self._lock:
            pipeline = self._clusters.get(key)
            if pipeline is not None:
                return pipeline

            if not has_value_equality(preparer):
                logger.warning(
                    "%s does not define __eq__; every instance gets its own cluster",
                    type(preparer).__name__,
                )

            pg = builder.start()
            try:
                preparer.prepare(pg.get_template_database())
            except Exception as e:
                pg.close()
                raise PreparationError(
                    f"Preparer {preparer!r} failed: {e}",
                    details={"port": pg.port},
                ) from e
            except BaseException:
                pg.close()
                raise

            pipeline = PrepPipeline(pg, name_length=ctx.config.database_name_length).start()
            self._clusters[key] = pipeline
            logger.info("Prepared cluster on port %s for %r", pg.port, preparer)
            return pipeline

    def pipelines(self) -> List[PrepPipeline]:
        with self._lock:
            return list(self._clusters.values())

    def close_all(self) -> None:
        """Stop every pipeline and its server."""
        with self._lock:
            pipelines = list(self._clusters.values())
            self._clusters.clear()
        for pipeline in pipelines:
            pipeline.close()
            pipeline.pg.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clusters)


class PreparedDbProvider:
    """Hands out fresh databases that already contain the preparer's schema.

    Example:
        provider = PreparedDbProvider.for_preparer(SqlScriptPreparer("CREATE TABLE foo (bar int)"))
        with provider.create_data_source().connect() as conn:
            conn.execute("SELECT * FROM foo")
    """

    def __init__(
        self,
        preparer: DatabasePreparer,
        customizers: Iterable[BuilderCustomizer] = (),
        app_context: Optional[ApplicationContext] = None,
    ) -> None:
        self._app_context = app_context or ApplicationContext.default()
        self.preparer = preparer
        self._pipeline = self._app_context.cluster_registry.get_or_create(
            preparer, tuple(customizers), self._app_context
        )

    @classmethod
    def for_preparer(
        cls,
        preparer: DatabasePreparer,
        customizers: Iterable[BuilderCustomizer] = (),
        app_context: Optional[ApplicationContext] = None,
    ) -> "PreparedDbProvider":
        return cls(preparer, customizers, app_context)

    @property
    def port(self) -> int:
        return self._pipeline.pg.port

    def _next(self, timeout: Optional[float] = None) -> DbInfo:
        return self._pipeline.get_next_db(timeout)

    def create_database(self, timeout: Optional[float] = None) -> str:
        """A new database as a JDBC-style URL carrying the credentials."""
        info = self.create_new_database(timeout)
        return add_credentials(info.url, info.user, info.password)

    def create_new_database(self, timeout: Optional[float] = None) -> ConnectionInfo:
        return self._next(timeout).connection_info()

    def create_data_source(self, timeout: Optional[float] = None) -> PgDataSource:
        return self.create_data_source_from_connection_info(self.create_new_database(timeout))

    def create_data_source_from_connection_info(
        self, connection_info: ConnectionInfo
    ) -> PgDataSource:
        return connection_info.to_data_source()

    def get_configuration_tweak(self, module_name: str) -> Dict[str, str]:
        """Connection settings for a new database, keyed for an ``ot.db.<module>`` config."""
        info = self.create_new_database()
        prefix = f"ot.db.{module_name}"
        tweak = {
            f"{prefix}.uri": info.url,
            f"{prefix}.ds.user": info.user,
        }
        if info.password is not None:
            tweak[f"{prefix}.ds.password"] = info.password
        return tweak
