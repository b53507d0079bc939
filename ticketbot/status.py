# ticketbot/status.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .domain import ChefRecord, ChefStatus

STATUS_EMOJI = {
    ChefStatus.OPEN: "🟢",
    ChefStatus.BUSY: "🟡",
    ChefStatus.CLOSED: "🔴",
}

DASHBOARD_TITLE = "🍳 Chef Status Dashboard"


@dataclass(frozen=True)
class StatusProjection:
    open_chefs: List[ChefRecord]
    total: int

    @property
    def open_count(self) -> int:
        return len(self.open_chefs)

    @property
    def any_open(self) -> bool:
        return bool(self.open_chefs)


def project(chefs: Sequence[ChefRecord]) -> StatusProjection:
    """Derive the open-chef view from a ledger snapshot. Nothing is cached."""
    return StatusProjection(
        open_chefs=[c for c in chefs if c.status == ChefStatus.OPEN],
        total=len(chefs),
    )


def render_dashboard(chefs: Sequence[ChefRecord], capacity: int = 4) -> str:
    view = project(chefs)

    lines: List[str] = [DASHBOARD_TITLE, "Current status of all delivery chefs", ""]
    if chefs:
        for c in chefs:
            lines.append(f"{STATUS_EMOJI[c.status]} <@{c.user_id}> - {c.status.value}")
    else:
        lines.append("No chefs registered")

    lines += [
        "",
        f"📱 {view.open_count}/{capacity} chefs currently open",
        "🟢 = Open for orders",
        "🟡 = Busy (limited orders)",
        "🔴 = Closed",
    ]
    return "\n".join(lines)
