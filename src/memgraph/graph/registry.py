"""Domain registry: the session object that owns the "current domain".

Only one domain's graph is cached at a time. Switching domains follows
``IDLE -> PERSISTING_CURRENT -> LOADING_TARGET -> UPDATING_STATE -> IDLE``:

- a failure while persisting aborts the switch and leaves the current domain
  and its cached graph untouched;
- a failure while loading leaves the registry pointing at the target domain
  with no cached graph, and the next read retries the load (raising
  StorageError if it fails again) instead of serving stale data.

Storage calls run in a worker thread so readers can keep going while a
switch is blocked on I/O; they wait for the switch to finish first.
"""

import asyncio
import logging
import re
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from memgraph.errors import (
    InvalidArgumentError,
    MemoryGraphError,
    NotFoundError,
    StorageError,
)
from memgraph.graph.store import GraphStore
from memgraph.memory.types import (
    Domain,
    DomainListing,
    DomainStatistics,
    EssentialDomain,
    PersistenceState,
    ReferenceSource,
    SearchHit,
    TermFrequency,
    utc_now,
)
from memgraph.storage.base import MemoryStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DOMAIN_NAME = "General"
DEFAULT_DOMAIN_DESCRIPTION = "Default domain for general memories"

# Word characters, dots and hyphens; no path separators, no leading dot
DOMAIN_ID_PATTERN = re.compile(r"^\w[\w.-]*$")


def check_domain_id(domain_id: Any) -> str:
    """Validate a new domain id and return it without surrounding whitespace.

    Raises:
        InvalidArgumentError: If the id is empty or contains characters other
            than letters, digits, ``_``, ``.`` and ``-``
    """
    if not isinstance(domain_id, str) or not domain_id.strip():
        raise InvalidArgumentError("Domain id must be a non-empty string")
    domain_id = domain_id.strip()
    if not DOMAIN_ID_PATTERN.match(domain_id):
        raise InvalidArgumentError(
            f"Invalid domain id {domain_id!r}: use letters, digits, '_', '.' or '-' "
            "and do not start with '.' or '-'"
        )
    return domain_id


class SwitchState(Enum):
    """Phases of the domain-switch protocol."""
    IDLE = "idle"
    PERSISTING_CURRENT = "persisting_current"
    LOADING_TARGET = "loading_target"
    UPDATING_STATE = "updating_state"


class DomainRegistry:
    """Tracks domains and the single current domain.

    Args:
        storage: Backend used for every read and write
        default_domain: Domain created and selected when storage is empty
        default_path: Path given to memories stored without one
    """

    def __init__(
        self,
        storage: MemoryStorage,
        default_domain: str = "general",
        default_path: str = "/",
    ):
        self.storage = storage
        self.default_domain = default_domain
        self.default_path = default_path
        self.state = SwitchState.IDLE
        self.current_domain: Optional[str] = None
        self._graph: Optional[GraphStore] = None
        self._lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()

    async def run_io(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(func, *args)

    def _enter(self, state: SwitchState) -> None:
        logger.debug(f"Domain switch state: {self.state.value} -> {state.value}")
        self.state = state
        if state is SwitchState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Prepare storage, ensure a default domain and load the current graph."""
        await self.run_io(self.storage.initialize)
        domains = await self.run_io(self.storage.get_domains)
        if not domains:
            domain = Domain(
                id=self.default_domain,
                name=DEFAULT_DOMAIN_NAME if self.default_domain == "general" else self.default_domain,
                description=DEFAULT_DOMAIN_DESCRIPTION,
            )
            await self.run_io(self.storage.create_domain, domain)
            domains = {domain.id: domain}
            logger.info(f"Created default domain {domain.id}")

        state = await self.run_io(self.storage.get_persistence_state)
        if state is not None and state.current_domain in domains:
            current = state.current_domain
        elif self.default_domain in domains:
            current = self.default_domain
        else:
            current = next(iter(domains))
        if state is None or state.current_domain != current:
            state = PersistenceState(current_domain=current)
            await self.run_io(self.storage.save_persistence_state, state)

        async with self._lock:
            self.current_domain = current
            self._graph = await self.run_io(GraphStore.load, self.storage, current)
        logger.info(f"Domain registry ready, current domain: {current}")

    async def close(self) -> None:
        await self.run_io(self.storage.close)

    # =========================================================================
    # Domains
    # =========================================================================

    async def get_domains(self) -> dict[str, Domain]:
        return await self.run_io(self.storage.get_domains)

    async def get_domain(self, domain_id: str) -> Domain:
        domains = await self.get_domains()
        if domain_id not in domains:
            raise NotFoundError(f"Domain not found: {domain_id}")
        return domains[domain_id]

    async def create_domain(self, domain_id: str, name: str, description: str = "") -> Domain:
        """Persist a new domain.

        Raises:
            InvalidArgumentError: If the id is malformed or the name is empty
            ConflictError: If the id already exists
        """
        domain_id = check_domain_id(domain_id)
        if not isinstance(name, str) or not name.strip():
            raise InvalidArgumentError("Domain name must be a non-empty string")
        domain = Domain(id=domain_id, name=name.strip(), description=description or "")
        async with self._lock:
            await self.run_io(self.storage.create_domain, domain)
        logger.info(f"Created domain {domain.id}")
        return domain

    async def list_domains(self) -> DomainListing:
        await self._idle.wait()
        domains = await self.get_domains()
        return DomainListing(domains=list(domains.values()), current_domain=self._require_current())

    def _require_current(self) -> str:
        if self.current_domain is None:
            raise StorageError("Domain registry is not initialized")
        return self.current_domain

    async def select_domain(self, domain_id: str) -> Domain:
        """Switch the current domain using the persist-then-load protocol.

        Raises:
            NotFoundError: If the domain does not exist
            StorageError: If persisting or loading fails
        """
        async with self._lock:
            target = await self.get_domain(domain_id)
            previous = self._require_current()

            try:
                self._enter(SwitchState.PERSISTING_CURRENT)
                try:
                    if self._graph is not None:
                        await self.run_io(self._graph.save, self.storage)
                except MemoryGraphError:
                    logger.warning(f"Switch to {domain_id} aborted: could not persist {previous}")
                    raise

                self._enter(SwitchState.LOADING_TARGET)
                self.current_domain = target.id
                self._graph = None
                try:
                    self._graph = await self.run_io(GraphStore.load, self.storage, target.id)
                except MemoryGraphError as e:
                    logger.warning(f"Switched to {target.id} but loading its graph failed: {e}")
                    raise StorageError(f"Failed to load domain {target.id}: {e}") from e

                self._enter(SwitchState.UPDATING_STATE)
                target = await self._touch(target.id)
                await self._save_state(current_domain=target.id)
            finally:
                self._enter(SwitchState.IDLE)

        logger.info(f"Switched domain {previous} -> {target.id}")
        return target

    # =========================================================================
    # Graph access
    # =========================================================================

    async def current_graph(self) -> GraphStore:
        """Return the cached graph of the current domain, loading it if needed."""
        await self._idle.wait()
        if self._graph is not None:
            return self._graph
        async with self._lock:
            return await self._ensure_loaded()

    async def _ensure_loaded(self) -> GraphStore:
        if self._graph is None:
            current = self._require_current()
            try:
                self._graph = await self.run_io(GraphStore.load, self.storage, current)
            except MemoryGraphError as e:
                raise StorageError(f"Failed to load domain {current}: {e}") from e
            logger.info(f"Reloaded graph for domain {current}")
        return self._graph

    async def load_snapshot(self, domain_id: str) -> GraphStore:
        """Graph of any domain, without changing the current domain."""
        if domain_id == self.current_domain:
            return await self.current_graph()
        await self.get_domain(domain_id)
        return await self.run_io(GraphStore.load, self.storage, domain_id)

    async def mutate(self, change: Callable[[GraphStore], T], last_memory_id: Any = ...) -> T:
        """Apply ``change`` to a copy of the current graph and flush it.

        The cached graph is replaced only after the flush succeeds. Passing
        ``last_memory_id`` also records it in the persistence state.
        """
        async with self._lock:
            graph = await self._ensure_loaded()
            working = graph.copy()
            result = change(working)
            await self.run_io(working.save, self.storage)
            self._graph = working
            await self._touch(working.domain)
            if last_memory_id is not ...:
                await self._save_state(current_domain=working.domain, last_memory_id=last_memory_id)
        return result

    async def search_content(
        self,
        query: str,
        domain: Optional[str] = None,
        max_results: int = 20,
    ) -> list[SearchHit]:
        return await self.run_io(self.storage.search_content, query, domain, max_results)

    async def find_references(
        self,
        target_domain: str,
        target_node_id: Optional[str] = None,
    ) -> list[ReferenceSource]:
        return await self.run_io(self.storage.find_references, target_domain, target_node_id)

    async def persistence_state(self) -> Optional[PersistenceState]:
        return await self.run_io(self.storage.get_persistence_state)

    async def domain_statistics(self) -> list[DomainStatistics]:
        return await self.run_io(self.storage.domain_statistics)

    async def edge_type_frequencies(self) -> list[TermFrequency]:
        return await self.run_io(self.storage.edge_type_frequencies)

    async def tag_frequencies(self, limit: Optional[int] = None) -> list[TermFrequency]:
        return await self.run_io(self.storage.tag_frequencies, limit)

    async def essential_memories(self, per_domain: int = 5) -> list[EssentialDomain]:
        return await self.run_io(self.storage.essential_memories, per_domain)

    async def _touch(self, domain_id: str) -> Domain:
        return await self.run_io(self.storage.touch_domain, domain_id, utc_now())

    async def _save_state(self, current_domain: str, last_memory_id: Any = ...) -> None:
        state = await self.run_io(self.storage.get_persistence_state)
        if last_memory_id is ...:
            last_memory_id = state.last_memory_id if state else None
        await self.run_io(
            self.storage.save_persistence_state,
            PersistenceState(current_domain=current_domain, last_memory_id=last_memory_id),
        )
