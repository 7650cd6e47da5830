"""Shared fixtures: an in-memory session manager with controllable call timing."""
from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from typing import Dict, Optional

import pytest

from core.interfaces import SessionManager, SessionManagerError
from logic.aggregator import InhibitorAggregator

APP_ID = "power-inhibit-indicator"


class FakeSessionManager(SessionManager):
    """Session manager stand-in.

    `hold(method, key)` makes the matching call block until the returned
    event is set; `fail(method, key)` makes it raise SessionManagerError.
    `key` is the handle for per-inhibitor calls and None otherwise.
    """

    def __init__(self) -> None:
        self.inhibitors: Dict[str, dict] = {}
        self.forced_flags: Optional[int] = None
        self.calls = []
        self.released = []
        self.connected = False
        self._callbacks = {}
        self._ids = itertools.count(1)
        self._tokens = itertools.count(100)
        self._gates = {}
        self._failures = set()
        self._started = defaultdict(asyncio.Event)

    # -- test controls -----------------------------------------------------

    def add_inhibitor(self, handle, owner, flags, reason, notify=False):
        self.inhibitors[handle] = {"owner": owner, "flags": flags, "reason": reason}
        if notify:
            self.emit_set_changed()

    def remove_inhibitor(self, handle, notify=False):
        self.inhibitors.pop(handle, None)
        if notify:
            self.emit_set_changed()

    def emit_set_changed(self):
        for callback in list(self._callbacks.values()):
            callback()

    def hold(self, method, key=None) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[(method, key)] = gate
        return gate

    def unhold(self, method, key=None):
        """Let later calls through without waking the ones already blocked."""
        self._gates.pop((method, key), None)

    def fail(self, method, key=None):
        self._failures.add((method, key))

    async def started(self, method, key=None):
        await self._started[(method, key)].wait()

    def count(self, method, key=None):
        return sum(1 for call in self.calls if call == (method, key))

    @property
    def subscriber_count(self):
        return len(self._callbacks)

    async def _enter(self, method, key=None):
        self.calls.append((method, key))
        self._started[(method, key)].set()
        await asyncio.sleep(0)
        gate = self._gates.get((method, key))
        if gate is not None:
            await gate.wait()
        if (method, key) in self._failures:
            raise SessionManagerError(f"{method} failed")

    def _lookup(self, handle):
        try:
            return self.inhibitors[handle]
        except KeyError:
            raise SessionManagerError(f"No such inhibitor {handle}")

    # -- SessionManager ----------------------------------------------------

    async def connect(self):
        self.connected = True

    async def close(self):
        self.connected = False

    async def list_inhibitor_handles(self):
        await self._enter("list")
        return list(self.inhibitors)

    async def get_inhibitor_flags(self, handle):
        await self._enter("flags", handle)
        return self._lookup(handle)["flags"]

    async def get_inhibitor_owner(self, handle):
        await self._enter("owner", handle)
        return self._lookup(handle)["owner"]

    async def get_inhibitor_reason(self, handle):
        await self._enter("reason", handle)
        return self._lookup(handle)["reason"]

    def get_aggregate_inhibited_flags(self):
        if self.forced_flags is not None:
            return self.forced_flags
        flags = 0
        for inhibitor in self.inhibitors.values():
            flags |= inhibitor["flags"]
        return flags

    async def acquire_inhibitor(self, owner_id, flags, description):
        await self._enter("acquire")
        token = next(self._tokens)
        self.inhibitors[f"/org/gnome/SessionManager/Inhibitor{token}"] = {
            "owner": owner_id, "flags": flags, "reason": description, "token": token,
        }
        return token

    async def release_inhibitor(self, token):
        self.released.append(token)
        await self._enter("release")
        for handle, inhibitor in list(self.inhibitors.items()):
            if inhibitor.get("token") == token:
                del self.inhibitors[handle]

    def subscribe_inhibitor_set_changed(self, callback):
        subscription_id = next(self._ids)
        self._callbacks[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id):
        self._callbacks.pop(subscription_id, None)


@pytest.fixture
def session():
    return FakeSessionManager()


@pytest.fixture
def changes():
    return []


@pytest.fixture
def aggregator(session, changes):
    return InhibitorAggregator(
        session,
        app_id=APP_ID,
        on_status_changed=lambda agg: changes.append((agg.status, agg.explanation)),
    )


def assert_consistent(aggregator):
    """Every tracked handle points at a live record that knows about it, and no record is empty."""
    records = aggregator.records
    for handle, owner_id in aggregator.handles.items():
        assert owner_id in records
        assert records[owner_id].has_handle(handle)
    for owner_id, record in records.items():
        assert record.owner_id == owner_id
        assert record.has_any_reason()
