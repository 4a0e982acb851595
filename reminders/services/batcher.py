"""Group reserved occurrences into one outbound message per (recipient, channel)."""

from __future__ import annotations

from typing import Dict, List, Tuple

from config import settings
from reminders.services import templates
from reminders.types.dispatch_contract import Channel, DueOccurrence, OutboundBatch


class DispatchBatcher:
    """Collects occurrences for one tick; ``flush`` renders and empties it.

    Groups keep first-seen order. Adding the same occurrence key twice is a
    no-op so a resumed row and a fresh one can never double a fragment.
    """

    def __init__(self, dashboard_url: str | None = None):
        self._dashboard_url = dashboard_url
        self._groups: Dict[Tuple[str, Channel], List[DueOccurrence]] = {}
        self._seen: set[str] = set()

    def add(self, occurrence: DueOccurrence) -> None:
        if occurrence.occurrence_key in self._seen:
            return
        self._seen.add(occurrence.occurrence_key)
        self._groups.setdefault((occurrence.recipient_id, occurrence.channel), []).append(occurrence)

    def __len__(self) -> int:
        return len(self._groups)

    def flush(self) -> list[OutboundBatch]:
        batches = [self._render(occurrences) for occurrences in self._groups.values()]
        self._groups = {}
        self._seen = set()
        return batches

    def _render(self, occurrences: List[DueOccurrence]) -> OutboundBatch:
        first = occurrences[0]
        fragments = [o.fragment for o in occurrences]
        if first.channel is Channel.SMS:
            return OutboundBatch(
                recipient_id=first.recipient_id,
                channel=first.channel,
                address=first.address,
                occurrences=occurrences,
                text=templates.build_medication_sms(fragments),
            )
        url = self._dashboard_url or settings.APP_DASHBOARD_URL
        return OutboundBatch(
            recipient_id=first.recipient_id,
            channel=first.channel,
            address=first.address,
            occurrences=occurrences,
            subject=templates.build_deadline_subject(fragments),
            text=templates.build_deadline_text(fragments, url),
            html=templates.build_deadline_html(fragments, url),
        )
