"""Progress summary for polling UIs; a pure read of the checkpoint."""

from __future__ import annotations

from dataclasses import dataclass

from server_sweep.domain.state import DiscoveryPhase, DiscoveryState


@dataclass(frozen=True, slots=True)
class DiscoveryStatus:
    count: int
    label: str
    skipped: int
    phase: DiscoveryPhase
    truncated: bool = False

    @property
    def is_complete(self) -> bool:
        return self.phase is DiscoveryPhase.COMPLETE

    def to_dict(self) -> dict[str, object]:
        return {
            "count": self.count,
            "label": self.label,
            "skipped": self.skipped,
            "phase": self.phase.value,
            "truncated": self.truncated,
        }


def build_status(state: DiscoveryState) -> DiscoveryStatus:
    count = len(state.collected_files)
    return DiscoveryStatus(
        count=count,
        label=_label(state.phase, count, state.skipped_count, state.truncated),
        skipped=state.skipped_count,
        phase=state.phase,
        truncated=state.truncated,
    )


def _label(phase: DiscoveryPhase, count: int, skipped: int, truncated: bool) -> str:
    if phase is DiscoveryPhase.NONE:
        return "External discovery not started"

    noun = "server file" if count == 1 else "server files"
    suffix = f" ({skipped:,} skipped)" if skipped else ""
    if phase is DiscoveryPhase.DISCOVERY:
        return f"Discovering: {count:,} {noun} found outside the protected root so far{suffix}"
    if truncated:
        suffix += " (file limit reached)"
    return f"{count:,} {noun} discovered outside the protected root{suffix}"


__all__ = ["DiscoveryStatus", "build_status"]
