from abc import ABC, abstractmethod
from typing import Callable, List

InhibitorSetCallback = Callable[[], None]


class SessionManagerError(RuntimeError):
    """Raised when a call to the session manager fails."""


class SessionManager(ABC):
    @abstractmethod
    async def connect(self) -> None:
        """Open the connection and start listening for inhibitor changes."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop listening and close the connection."""
        pass

    @abstractmethod
    async def list_inhibitor_handles(self) -> List[str]:
        """Return a snapshot of every live inhibitor handle."""
        pass

    @abstractmethod
    async def get_inhibitor_flags(self, handle: str) -> int:
        """Return the inhibit flags bitmask of one inhibitor."""
        pass

    @abstractmethod
    async def get_inhibitor_owner(self, handle: str) -> str:
        """Return the application id that registered the inhibitor."""
        pass

    @abstractmethod
    async def get_inhibitor_reason(self, handle: str) -> str:
        """Return the human-readable reason given for the inhibitor."""
        pass

    @abstractmethod
    def get_aggregate_inhibited_flags(self) -> int:
        """Return the cached bitmask of actions currently inhibited session-wide."""
        pass

    @abstractmethod
    async def acquire_inhibitor(self, owner_id: str, flags: int, description: str) -> int:
        """Register a new inhibitor and return its token."""
        pass

    @abstractmethod
    async def release_inhibitor(self, token: int) -> None:
        """Release an inhibitor previously returned by acquire_inhibitor."""
        pass

    @abstractmethod
    def subscribe_inhibitor_set_changed(self, callback: InhibitorSetCallback) -> int:
        """Call `callback` whenever an inhibitor is added or removed. Returns a subscription id."""
        pass

    @abstractmethod
    def unsubscribe(self, subscription_id: int) -> None:
        """Remove a subscription made with subscribe_inhibitor_set_changed."""
        pass
