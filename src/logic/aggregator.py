import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Optional, Set

from core.interfaces import SessionManager
from logic.inhibitors import (
    INHIBIT_IDLE_FLAG,
    InhibitorRecord,
    InhibitorStatus,
    inhibits_power_management,
    summarize,
)

DEFAULT_DESCRIPTION = "Applet preventing power management"


class SelfInhibition(Enum):
    ABSENT = "absent"
    ACQUIRING = "acquiring"
    HELD = "held"
    RELEASING = "releasing"


class InhibitorAggregator:
    """Tracks every power-management inhibitor in the session and coalesces them into one status.

    Each refresh takes a new generation number. Every continuation that resumes
    after an await compares its generation with the current one and drops its
    result if a newer refresh has started, so only the latest snapshot ever
    mutates the tracked records or reaches the status callback.
    """

    def __init__(self, session: SessionManager, app_id: str,
                 inhibit_flags: int = INHIBIT_IDLE_FLAG,
                 description: str = DEFAULT_DESCRIPTION,
                 on_status_changed: Optional[Callable[["InhibitorAggregator"], None]] = None):
        self._session = session
        self.app_id = app_id
        self.inhibit_flags = inhibit_flags
        self.description = description

        # Each owner has exactly one record; several handles may share it.
        self._records_by_owner: Dict[str, InhibitorRecord] = {}
        self._handle_to_record: Dict[str, InhibitorRecord] = {}
        # Handles still holding the placeholder reason.
        self._unresolved: Set[str] = set()

        self._generation = 0
        self._self_state = SelfInhibition.ABSENT
        self._self_token: Optional[int] = None
        self._release_pending = False

        self._status = InhibitorStatus.UNKNOWN
        self._explanation = ""
        self._status_callback = on_status_changed

        self._subscription_id: Optional[int] = None
        self._tasks: Set[asyncio.Future] = set()
        self._closed = False

    # -- read accessors --------------------------------------------------

    @property
    def status(self) -> InhibitorStatus:
        return self._status

    @property
    def explanation(self) -> str:
        return self._explanation

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def self_inhibition(self) -> SelfInhibition:
        return self._self_state

    @property
    def self_token(self) -> Optional[int]:
        return self._self_token

    @property
    def is_self_inhibiting(self) -> bool:
        return self._self_state is not SelfInhibition.ABSENT

    @property
    def records(self) -> Dict[str, InhibitorRecord]:
        return dict(self._records_by_owner)

    @property
    def handles(self) -> Dict[str, str]:
        """Tracked handles mapped to the owner id of their record."""
        return {handle: record.owner_id for handle, record in self._handle_to_record.items()}

    def on_status_changed(self, callback: Optional[Callable[["InhibitorAggregator"], None]]) -> None:
        self._status_callback = callback

    # -- lifecycle -------------------------------------------------------

    async def start(self):
        """Subscribe to inhibitor changes and run the first refresh."""
        if self._subscription_id is None:
            self._subscription_id = self._session.subscribe_inhibitor_set_changed(
                self._on_inhibitor_set_changed)
        await self.refresh()

    async def shutdown(self):
        """Release our own inhibitor and stop reacting to the session manager. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.reset()

        if self._subscription_id is not None:
            self._session.unsubscribe(self._subscription_id)
            self._subscription_id = None

        if self._self_state is SelfInhibition.HELD:
            await self._release(self._self_token)
        logging.info("Inhibitor aggregator shut down")

    def reset(self):
        """Abort in-flight work and forget every tracked inhibitor."""
        self._generation += 1
        self._records_by_owner.clear()
        self._handle_to_record.clear()
        self._unresolved.clear()

    async def wait_idle(self):
        """Wait until every refresh scheduled by a notification has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_inhibitor_set_changed(self):
        if self._closed:
            return
        self._spawn(self.refresh())

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -- reconciliation --------------------------------------------------

    async def refresh(self):
        """Reconcile against a fresh snapshot of the session's inhibitors."""
        if self._closed:
            return
        self._generation += 1
        await self._reconcile(self._generation)

    async def _reconcile(self, generation: int):
        try:
            snapshot = await self._session.list_inhibitor_handles()
        except Exception as e:
            logging.debug(f"Could not list inhibitors: {e}")
            return
        if generation != self._generation:
            return

        present = list(dict.fromkeys(handle for handle in snapshot if handle))
        pending = []
        for handle in present:
            if handle not in self._handle_to_record:
                pending.append(self._admit_handle(handle, generation))
            elif handle in self._unresolved:
                pending.append(self._resolve_reason(handle, generation))

        present_set = set(present)
        for handle in list(self._handle_to_record):
            if handle not in present_set:
                self._evict_handle(handle)

        self._update_status(generation)

        if pending:
            await asyncio.gather(*pending)

    async def _admit_handle(self, handle: str, generation: int):
        try:
            flags = await self._session.get_inhibitor_flags(handle)
            if generation != self._generation:
                return
            if not inhibits_power_management(flags):
                logging.debug(f"Ignoring inhibitor {handle} (flags={flags})")
                return

            owner_id = await self._session.get_inhibitor_owner(handle)
        except Exception as e:
            logging.debug(f"Dropped inhibitor {handle}: {e}")
            return
        if generation != self._generation:
            return

        if owner_id == self.app_id:
            # Our own inhibitor; tracked through the self-inhibition state instead.
            self._update_status(generation)
            return

        record = self._records_by_owner.get(owner_id)
        if record is None:
            record = InhibitorRecord(owner_id)
            self._records_by_owner[owner_id] = record

        self._handle_to_record[handle] = record
        record.add_or_update_reason(handle, "")
        self._unresolved.add(handle)

        await self._resolve_reason(handle, generation)

    async def _resolve_reason(self, handle: str, generation: int):
        try:
            reason = await self._session.get_inhibitor_reason(handle)
        except Exception as e:
            logging.debug(f"Could not read reason of inhibitor {handle}: {e}")
            if generation == self._generation and handle in self._handle_to_record:
                self._evict_handle(handle)
                self._update_status(generation)
            return
        if generation != self._generation:
            return

        record = self._handle_to_record.get(handle)
        if record is None:
            return
        record.add_or_update_reason(handle, reason)
        self._unresolved.discard(handle)
        self._update_status(generation)

    def _evict_handle(self, handle: str):
        record = self._handle_to_record.pop(handle, None)
        if record is None:
            logging.warning(f"Asked to remove untracked inhibitor {handle}")
            return

        record.remove_reason(handle)
        self._unresolved.discard(handle)
        if not record.has_any_reason():
            del self._records_by_owner[record.owner_id]

    def _update_status(self, generation: int):
        if generation != self._generation:
            return

        flags = self._session.get_aggregate_inhibited_flags()
        status, explanation = summarize(flags, self.is_self_inhibiting,
                                        self._records_by_owner.values())
        if status is self._status and explanation == self._explanation:
            return

        self._status = status
        self._explanation = explanation
        logging.info(f"Power management status: {status.value}")
        if self._status_callback is not None:
            self._status_callback(self)

    # -- self-inhibition -------------------------------------------------

    async def inhibit(self):
        """Register our own inhibitor unless we already hold or are acquiring one.

        Called mid-acquire, it withdraws any release requested since the acquire started.
        """
        if self._self_state is SelfInhibition.ACQUIRING:
            self._release_pending = False
            return
        if self._closed or self._self_state is not SelfInhibition.ABSENT:
            return

        self._self_state = SelfInhibition.ACQUIRING
        self._release_pending = False
        try:
            token = await self._session.acquire_inhibitor(self.app_id, self.inhibit_flags,
                                                          self.description)
        except asyncio.CancelledError:
            self._self_state = SelfInhibition.ABSENT
            self._release_pending = False
            raise
        except Exception as e:
            logging.warning(f"Failed to inhibit power management: {e}")
            self._self_state = SelfInhibition.ABSENT
            self._release_pending = False
            await self.refresh()
            return

        self._self_token = token
        self._self_state = SelfInhibition.HELD
        logging.info(f"Inhibited power management (cookie {token})")

        if self._closed:
            await self._release(token)
            return
        if self._release_pending:
            self._release_pending = False
            await self.allow()
            return
        await self.refresh()

    async def allow(self):
        """Release our own inhibitor. A release requested mid-acquire runs once the acquire completes."""
        if self._self_state is SelfInhibition.ACQUIRING:
            self._release_pending = True
            return
        if self._self_state is not SelfInhibition.HELD:
            return

        await self._release(self._self_token)
        await self.refresh()

    async def toggle(self):
        if self._self_state is SelfInhibition.ABSENT:
            await self.inhibit()
        elif self._self_state is SelfInhibition.ACQUIRING:
            # The acquire is still in flight; flip what happens once it lands.
            self._release_pending = not self._release_pending
        else:
            await self.allow()

    async def _release(self, token):
        self._self_state = SelfInhibition.RELEASING
        try:
            await self._session.release_inhibitor(token)
            logging.info(f"Released power management inhibitor (cookie {token})")
        except Exception as e:
            logging.warning(f"Failed to release inhibitor {token}: {e}")
        finally:
            self._self_token = None
            self._self_state = SelfInhibition.ABSENT
