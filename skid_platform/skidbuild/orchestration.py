import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from skidbuild.decoding import decode_manifest
from skidbuild.records import Channel
from skidbuild.registry import PluginRegistry
from skidbuild.store import SessionConflictError, SessionStore
from skidbuild.workflow import InvalidTransitionError, ScanWorkflow, Submitter, WorkflowState

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """Live workflows keyed by session id.

    A workflow is built from the store the first time its session is touched
    and reused afterwards; each one is used by a single request at a time.
    """

    def __init__(self, store: SessionStore, registry: PluginRegistry, submitter: Submitter):
        self._store = store
        self._registry = registry
        self._submitter = submitter
        self._workflows: dict[int, ScanWorkflow] = {}
        self._locks: dict[int, threading.Lock] = {}
        self._table_lock = threading.Lock()

    @property
    def store(self) -> SessionStore:
        return self._store

    def _lock_for(self, session_id: int) -> threading.Lock:
        with self._table_lock:
            return self._locks.setdefault(session_id, threading.Lock())

    def _load(self, session_id: int) -> ScanWorkflow:
        workflow = self._workflows.get(session_id)
        if workflow is None:
            session = self._store.get_session(session_id)
            plugin = self._registry.resolve(session.channel.value)
            workflow = ScanWorkflow.load(self._store, session, plugin, self._submitter)
            self._workflows[session_id] = workflow
        return workflow

    @contextmanager
    def workflow(self, session_id: int) -> Iterator[ScanWorkflow]:
        with self._lock_for(session_id):
            workflow = self._load(session_id)
            try:
                yield workflow
            finally:
                if workflow.state == WorkflowState.COMPLETED:
                    self._evict(session_id)

    def _evict(self, session_id: int) -> None:
        with self._table_lock:
            self._workflows.pop(session_id, None)
            self._locks.pop(session_id, None)
        logger.info("Released completed session %s", session_id)

    def live_session_ids(self) -> list[int]:
        with self._table_lock:
            return sorted(self._workflows)

    def start(
        self,
        raw_manifest: str,
        channel: str = Channel.SKID_BUILD.value,
        operator: str | None = None,
        route: str | None = None,
    ) -> ScanWorkflow:
        """Handle a manifest scanned with no session in hand.

        An order that already has an open session is joined instead of
        getting a second one.
        """
        plugin = self._registry.resolve(channel)
        manifest = decode_manifest(raw_manifest)
        order = self._store.find_order(manifest.order_number, manifest.dock_code)
        existing = self._store.find_resumable(order_id=order.order_id)
        if existing is not None:
            if existing.channel != Channel(plugin.channel):
                raise SessionConflictError(order.order_id, existing.channel.value)
            with self.workflow(existing.session_id) as workflow:
                if workflow.state == WorkflowState.ERROR:
                    raise InvalidTransitionError(
                        "scan a manifest", workflow.state,
                        f"session {existing.session_id} failed submission and must be resumed",
                    )
                workflow.manifest_scan(raw_manifest)
                return workflow

        workflow = ScanWorkflow(self._store, plugin, self._submitter, operator=operator, route=route)
        workflow.manifest_scan(raw_manifest)
        session_id = workflow.session.session_id
        with self._lock_for(session_id):
            live = self._workflows.setdefault(session_id, workflow)
        if live is not workflow:
            # Lost a creation race; replay the manifest on the live workflow.
            with self.workflow(session_id) as joined:
                joined.manifest_scan(raw_manifest)
                return joined
        logger.info("Started workflow for session %s", session_id)
        return workflow

    def resume(self, session_id: int) -> ScanWorkflow:
        with self.workflow(session_id) as workflow:
            if workflow.state == WorkflowState.ERROR:
                workflow.resume()
            elif workflow.state == WorkflowState.COMPLETED:
                raise InvalidTransitionError("resume", workflow.state)
            return workflow

    def find_resumable(self, order_number: str | None = None, route: str | None = None):
        order_id = None
        if order_number:
            order_id = self._store.find_order(order_number).order_id
        return self._store.find_resumable(order_id=order_id, route=route)

