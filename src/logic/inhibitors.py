from enum import Enum
from typing import Dict, Iterable, Iterator, Tuple

# GNOME SessionManager inhibit flags: 1=Logout, 2=SwitchUser, 4=Suspend, 8=Idle
INHIBIT_SLEEP_FLAG = 4
INHIBIT_IDLE_FLAG = 8
POWER_MANAGEMENT_FLAGS = INHIBIT_SLEEP_FLAG | INHIBIT_IDLE_FLAG


class InhibitorStatus(Enum):
    ALLOWED = "allowed"
    INHIBITED_BY_APPLET = "inhibited_by_applet"
    INHIBITED_BY_OTHER = "inhibited_by_other"
    INHIBITED_BY_BOTH = "inhibited_by_both"
    UNKNOWN = "unknown"


STATUS_PHRASES = {
    InhibitorStatus.ALLOWED: "allowed",
    InhibitorStatus.INHIBITED_BY_APPLET: "inhibited by the applet",
    InhibitorStatus.INHIBITED_BY_OTHER: "inhibited by",
    InhibitorStatus.INHIBITED_BY_BOTH: "inhibited by the applet and",
    InhibitorStatus.UNKNOWN: "unknown",
}


def inhibits_power_management(flags: int) -> bool:
    """True if the flags inhibit idle, sleep, or both."""
    return bool(flags & POWER_MANAGEMENT_FLAGS)


class InhibitorRecord:
    """All inhibitors registered by one application, keyed by inhibitor handle."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        self._reasons_by_handle: Dict[str, str] = {}

    def add_or_update_reason(self, handle: str, reason: str) -> None:
        self._reasons_by_handle[handle] = reason

    def remove_reason(self, handle: str) -> None:
        self._reasons_by_handle.pop(handle, None)

    def has_any_reason(self) -> bool:
        return bool(self._reasons_by_handle)

    def has_handle(self, handle: str) -> bool:
        return handle in self._reasons_by_handle

    def handles(self) -> Iterator[str]:
        return iter(list(self._reasons_by_handle))

    def reasons(self) -> Iterator[str]:
        """Yield the reason of every handle, in the order the handles were added."""
        return (reason for reason in self._reasons_by_handle.values())

    def __repr__(self):
        return f"InhibitorRecord({self.owner_id!r}, {self._reasons_by_handle!r})"


def compute_status(inhibited_flags: int, self_inhibited: bool,
                   other_owner_count: int) -> InhibitorStatus:
    """Coalesce the session-wide flags and local bookkeeping into one status.

    Rows are evaluated in order; combinations that match none of them (for
    example flags reporting inhibition that no tracked inhibitor accounts
    for) are reported as UNKNOWN.
    """
    inhibited = inhibits_power_management(inhibited_flags)
    has_others = other_owner_count > 0

    if inhibited and self_inhibited and has_others:
        return InhibitorStatus.INHIBITED_BY_BOTH
    if inhibited and self_inhibited and not has_others:
        return InhibitorStatus.INHIBITED_BY_APPLET
    if inhibited and not self_inhibited and has_others:
        return InhibitorStatus.INHIBITED_BY_OTHER
    if not inhibited and not self_inhibited and not has_others:
        return InhibitorStatus.ALLOWED
    return InhibitorStatus.UNKNOWN


def build_explanation(status: InhibitorStatus, records: Iterable[InhibitorRecord]) -> str:
    """Describe `status`, listing one "<owner> (<reason>)" entry per tracked inhibitor."""
    entries = [f"{record.owner_id} ({reason})"
               for record in records
               for reason in record.reasons()]
    explanation = "Power management is " + STATUS_PHRASES[status]
    if entries:
        explanation += "\n" + ",\n".join(entries)
    return explanation


def summarize(inhibited_flags: int, self_inhibited: bool,
              records: Iterable[InhibitorRecord]) -> Tuple[InhibitorStatus, str]:
    records = list(records)
    status = compute_status(inhibited_flags, self_inhibited, len(records))
    return status, build_explanation(status, records)
