"""
State Merger for Ledger Sync Reconciliation

Builds the next committed state from the desired records. Every field comes
from the desired record; the reserved ``Time`` stamp is carried over from the
committed counterpart when it has one and freshly stamped otherwise.
"""

import logging
from collections import defaultdict, deque
from typing import Callable, Dict, List, Any, Optional
from datetime import datetime, timezone

from ledger_sync.reconciliation.differ import StateDiffer

logger = logging.getLogger(__name__)

TIME_FIELD = "Time"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class StateMerger:
    """
    Merges desired records with committed records.

    Pairing is positional unless a ``key_field`` is given. Positional pairing
    attributes stamps to the wrong record when rows are reordered or inserted
    in the middle of the table, so collections with a stable identifier
    should configure one.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        differ: Optional[StateDiffer] = None
    ):
        """
        Initialize the merger.

        Args:
            clock: Returns the current time; defaults to UTC now
            differ: Used to report repeated identifiers
        """
        self.clock = clock or utc_now
        self.differ = differ or StateDiffer()
        logger.debug("Initialized StateMerger")

    def merge(
        self,
        desired: List[Dict[str, Any]],
        committed: List[Dict[str, Any]],
        key_field: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Build the next state.

        Args:
            desired: Desired records (order is preserved in the result)
            committed: Currently committed records
            key_field: Identifier field; positional pairing when None

        Returns:
            New list of merged records

        Raises:
            ValueError: If key_field is set and a desired record lacks it
        """
        stamp = format_timestamp(self.clock())

        if key_field:
            counterparts = self._counterparts_by_key(desired, committed, key_field)
        else:
            if committed and len(desired) != len(committed):
                logger.warning(
                    f"Pairing {len(desired)} desired with {len(committed)} committed records by position; "
                    f"stamps follow row order. Configure key_field to pair by identifier"
                )
            counterparts = [
                committed[i] if i < len(committed) else None
                for i in range(len(desired))
            ]

        next_state = []
        stamped = 0
        for record, counterpart in zip(desired, counterparts):
            merged = dict(record)
            if counterpart is not None and TIME_FIELD in counterpart:
                merged[TIME_FIELD] = counterpart[TIME_FIELD]
            else:
                merged[TIME_FIELD] = stamp
                stamped += 1
            next_state.append(merged)

        logger.debug(
            f"Merged {len(next_state)} records "
            f"({stamped} newly stamped, pairing={'key:' + key_field if key_field else 'position'})"
        )
        return next_state

    def _counterparts_by_key(self, desired, committed, key_field):
        committed_index = defaultdict(deque)
        for record in committed:
            value = record.get(key_field)
            if value is not None:
                committed_index[str(value)].append(record)

        for i, record in enumerate(desired):
            if record.get(key_field) is None:
                raise ValueError(
                    f"Desired record at index {i} has no value for key field '{key_field}'"
                )

        # Repeated identifiers pair with committed occurrences in row order
        duplicates = self.differ.find_duplicates(desired, key_field)
        if duplicates:
            logger.warning(
                f"Duplicate {key_field} values in desired records: "
                f"{', '.join(d['key'] for d in duplicates)}"
            )

        counterparts = []
        for record in desired:
            candidates = committed_index.get(str(record[key_field]))
            counterparts.append(candidates.popleft() if candidates else None)

        return counterparts
