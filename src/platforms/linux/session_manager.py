import asyncio
import itertools
import logging
from contextlib import AsyncExitStack
from typing import Dict, List, Optional

from jeepney import DBusAddress, HeaderFields, MatchRule, Properties, message_bus, new_method_call
from jeepney.io.asyncio import open_dbus_router
from jeepney.wrappers import DBusErrorResponse, unwrap_msg

from core.interfaces import InhibitorSetCallback, SessionManager, SessionManagerError

BUS_NAME = 'org.gnome.SessionManager'
MANAGER_PATH = '/org/gnome/SessionManager'
MANAGER_INTERFACE = 'org.gnome.SessionManager'
INHIBITOR_INTERFACE = 'org.gnome.SessionManager.Inhibitor'
PROPERTIES_INTERFACE = 'org.freedesktop.DBus.Properties'


class GnomeSessionManager(SessionManager):
    """GNOME SessionManager client over DBus (jeepney, asyncio).

    Works with gnome-session and with compatible implementations such as
    cinnamon-session and mate-session that expose the same interface.

    InhibitedActions is cached so it can be read synchronously. The cache is
    refreshed on connect, on PropertiesChanged, after Inhibit/Uninhibit, and
    right before InhibitorAdded/InhibitorRemoved subscribers are notified.
    """

    def __init__(self, bus: str = 'SESSION', router=None):
        self.bus = bus
        self.router = router
        self.manager = DBusAddress(MANAGER_PATH, bus_name=BUS_NAME, interface=MANAGER_INTERFACE)
        self._signal_rule = MatchRule(type='signal', path=MANAGER_PATH)
        self._inhibited_actions = 0
        self._callbacks: Dict[int, InhibitorSetCallback] = {}
        self._subscription_ids = itertools.count(1)
        self._stack: Optional[AsyncExitStack] = None
        self._listener: Optional[asyncio.Task] = None
        # Set when connect() opened the router itself rather than being handed one.
        self._owns_router = False

    async def connect(self):
        if self._stack is not None:
            return
        self._stack = AsyncExitStack()
        try:
            if self.router is None:
                self.router = await self._stack.enter_async_context(open_dbus_router(bus=self.bus))
                self._owns_router = True
            await self._call(message_bus.AddMatch(self._signal_rule))
            queue = self._stack.enter_context(self.router.filter(self._signal_rule, bufsize=64))
            self._listener = asyncio.ensure_future(self._listen(queue))
        except Exception:
            await self._stack.aclose()
            self._stack = None
            self._drop_router()
            raise
        await self._refresh_inhibited_actions()
        logging.info(f"Connected to {BUS_NAME} on the {self.bus.lower()} bus")

    async def close(self):
        if self._stack is None:
            return
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        try:
            await self._call(message_bus.RemoveMatch(self._signal_rule))
        except Exception as e:
            logging.debug(f"RemoveMatch failed: {e}")
        await self._stack.aclose()
        self._stack = None
        self._callbacks.clear()
        self._drop_router()
        logging.info(f"Disconnected from {BUS_NAME}")

    def _drop_router(self):
        if self._owns_router:
            self.router = None
            self._owns_router = False

    # -- calls -----------------------------------------------------------

    async def _call(self, msg):
        try:
            reply = await self.router.send_and_get_reply(msg)
            return unwrap_msg(reply)
        except DBusErrorResponse as e:
            raise SessionManagerError(f"{e.name}: {e.data}") from e

    def _inhibitor(self, handle):
        return DBusAddress(handle, bus_name=BUS_NAME, interface=INHIBITOR_INTERFACE)

    async def list_inhibitor_handles(self) -> List[str]:
        body = await self._call(new_method_call(self.manager, 'GetInhibitors'))
        return list(body[0])

    async def get_inhibitor_flags(self, handle: str) -> int:
        body = await self._call(new_method_call(self._inhibitor(handle), 'GetFlags'))
        return int(body[0])

    async def get_inhibitor_owner(self, handle: str) -> str:
        body = await self._call(new_method_call(self._inhibitor(handle), 'GetAppId'))
        return str(body[0])

    async def get_inhibitor_reason(self, handle: str) -> str:
        body = await self._call(new_method_call(self._inhibitor(handle), 'GetReason'))
        return str(body[0])

    def get_aggregate_inhibited_flags(self) -> int:
        return self._inhibited_actions

    async def acquire_inhibitor(self, owner_id: str, flags: int, description: str) -> int:
        # toplevel_xid 0: not tied to any window
        msg = new_method_call(self.manager, 'Inhibit', 'susu', (owner_id, 0, description, flags))
        body = await self._call(msg)
        await self._refresh_inhibited_actions()
        return body[0]

    async def release_inhibitor(self, token: int) -> None:
        await self._call(new_method_call(self.manager, 'Uninhibit', 'u', (token,)))
        await self._refresh_inhibited_actions()

    async def _refresh_inhibited_actions(self):
        try:
            body = await self._call(Properties(self.manager).get('InhibitedActions'))
        except Exception as e:
            logging.debug(f"Could not read InhibitedActions: {e}")
            return
        _signature, value = body[0]
        self._inhibited_actions = int(value)

    # -- signals ---------------------------------------------------------

    def subscribe_inhibitor_set_changed(self, callback: InhibitorSetCallback) -> int:
        subscription_id = next(self._subscription_ids)
        self._callbacks[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id: int) -> None:
        self._callbacks.pop(subscription_id, None)

    async def _listen(self, queue):
        while True:
            msg = await queue.get()
            try:
                await self._dispatch_signal(msg)
            except Exception as e:
                logging.error(f"Error handling {BUS_NAME} signal: {e}")

    async def _dispatch_signal(self, msg):
        fields = msg.header.fields
        interface = fields.get(HeaderFields.interface)
        member = fields.get(HeaderFields.member)

        if interface == PROPERTIES_INTERFACE and member == 'PropertiesChanged':
            changed_interface, changed, _invalidated = msg.body
            if changed_interface == MANAGER_INTERFACE and 'InhibitedActions' in changed:
                _signature, value = changed['InhibitedActions']
                self._inhibited_actions = int(value)
            return

        if interface == MANAGER_INTERFACE and member in ('InhibitorAdded', 'InhibitorRemoved'):
            logging.debug(f"{member}: {msg.body[0] if msg.body else ''}")
            await self._refresh_inhibited_actions()
            for callback in list(self._callbacks.values()):
                callback()
