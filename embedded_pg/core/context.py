"""Application context for explicit dependency management.

ApplicationContext bundles the process-wide collaborators: configuration,
port allocation, the extracted-binary cache, process management and the
cluster registry. Production code shares ``ApplicationContext.default()``;
tests build isolated contexts with ``ApplicationContext.for_testing()``.

Usage:
    ctx = ApplicationContext.create(load_config(working_dir=Path("/tmp/pg")))
    with EmbeddedPostgres.builder(ctx).start() as pg:
        ...

    test_ctx = ApplicationContext.for_testing(port_allocator=Mock())
"""

import threading
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from .types import EmbeddedPgConfig
from .log import Logger
from .process import ProcessExecutor, ProcessSupervisor
from ..utils.ports import PortAllocator
from ..binaries.extractor import BinaryCache

if TYPE_CHECKING:
    from ..provisioning.provider import ClusterRegistry

_default_context: Optional["ApplicationContext"] = None
_default_lock = threading.Lock()


@dataclass(frozen=True)
class ApplicationContext:
    """Immutable application-wide context containing all dependencies.

    Attributes:
        config: embedded_pg configuration
        logger: Logging instance
        port_allocator: Port allocation service
        binary_cache: Extracted bundle directories keyed by resolver
        process_executor: Runs initdb and pg_ctl
        process_supervisor: Owns the long-running postgres processes
        cluster_registry: Prepared clusters keyed by preparer and settings
    """

    config: EmbeddedPgConfig
    logger: Logger
    port_allocator: PortAllocator
    binary_cache: BinaryCache
    process_executor: ProcessExecutor
    process_supervisor: ProcessSupervisor
    cluster_registry: "ClusterRegistry"

    @classmethod
    def create(
        cls,
        config: EmbeddedPgConfig,
        *,
        logger: Optional[Logger] = None,
        port_allocator: Optional[PortAllocator] = None,
        binary_cache: Optional[BinaryCache] = None,
        process_executor: Optional[ProcessExecutor] = None,
        process_supervisor: Optional[ProcessSupervisor] = None,
        cluster_registry: Optional["ClusterRegistry"] = None,
    ) -> "ApplicationContext":
        """Create application context with default implementations.

        Args:
            config: embedded_pg configuration (required)
            logger: Optional custom logger
            port_allocator: Optional custom port allocator
            binary_cache: Optional binary cache to share between contexts
            process_executor: Optional one-shot command runner
            process_supervisor: Optional long-running process supervisor
            cluster_registry: Optional cluster registry

        Returns:
            Immutable ApplicationContext with all dependencies initialized
        """
        # Import here to avoid circular dependencies at module level
        from .log import get_logger
        from ..utils.ports import PortManager
        from ..provisioning.provider import ClusterRegistry as ClusterRegistryImpl

        return cls(
            config=config,
            logger=logger or get_logger("embedded_pg"),
            port_allocator=port_allocator or PortManager(),
            binary_cache=binary_cache if binary_cache is not None else BinaryCache(),
            process_executor=process_executor or ProcessExecutor(),
            process_supervisor=process_supervisor or ProcessSupervisor(),
            cluster_registry=(
                cluster_registry if cluster_registry is not None else ClusterRegistryImpl()
            ),
        )

    @classmethod
    def for_testing(
        cls,
        config: Optional[EmbeddedPgConfig] = None,
        **overrides,
    ) -> "ApplicationContext":
        """Create an isolated context; nothing is shared with default().

        Example:
            >>> ctx = ApplicationContext.for_testing(config=EmbeddedPgConfig(working_dir=tmp_path))
        """
        if config is None:
            config = EmbeddedPgConfig()
        return cls.create(config, **overrides)

    @classmethod
    def default(cls) -> "ApplicationContext":
        """Process-wide context built from the global configuration on first use."""
        global _default_context
        with _default_lock:
            if _default_context is None:
                from .config import get_config

                _default_context = cls.create(get_config())
            return _default_context


def reset_default_context() -> None:
    """Drop the process-wide context; the next default() call builds a new one."""
    global _default_context
    with _default_lock:
        _default_context = None
