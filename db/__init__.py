from .db import (
    Base,
    create_all,
    dispose_engine,
    fetch_medication_schedules,
    fetch_deadline_watches,
    reserve_occurrence,
    fetch_stale_reservations,
    claim_retry,
    get_dispatch_entry,
    mark_dispatch_sent,
    mark_dispatch_failed,
    record_dispatch_error,
)  # noqa: F401
