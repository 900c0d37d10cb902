"""
State Differ for Ledger Sync Reconciliation

Summarizes how a desired state differs from the committed state. Records are
paired by position, or by an identifier field when the collection has one.
The summary feeds logs and metrics; the merge itself lives in merger.py.
"""

import logging
from typing import Dict, List, Any, Optional
from collections import defaultdict

from ledger_sync.reconciliation.comparer import StateComparer

logger = logging.getLogger(__name__)


class StateDiffer:
    """
    Detects discrepancies between desired and committed record sequences.

    Identifies:
    - Added records (in desired but not committed)
    - Removed records (committed but no longer desired)
    - Changed records (paired but with different values)
    """

    def __init__(self, comparer: Optional[StateComparer] = None):
        self.comparer = comparer or StateComparer()
        logger.debug("Initialized StateDiffer")

    def summarize(
        self,
        desired: List[Dict[str, Any]],
        committed: List[Dict[str, Any]],
        key_field: Optional[str] = None,
        ignore_fields: Optional[List[str]] = None
    ) -> Dict[str, int]:
        """
        Count added, removed, changed and unchanged records.

        Args:
            desired: Desired records
            committed: Committed records
            key_field: Identifier field; positional pairing when None
            ignore_fields: Fields ignored when deciding a pair changed

        Returns:
            Dictionary with added, removed, changed, unchanged counts
        """
        if key_field:
            pairs, added, removed = self._pair_by_key(desired, committed, key_field)
        else:
            pairs, added, removed = self._pair_by_position(desired, committed)

        changed = 0
        for desired_record, committed_record in pairs:
            result = self.comparer.compare_records_detailed(
                desired_record,
                committed_record,
                ignore_fields=ignore_fields
            )
            if not result["is_equal"]:
                changed += 1

        summary = {
            "added": added,
            "removed": removed,
            "changed": changed,
            "unchanged": len(pairs) - changed
        }

        logger.debug(f"Diff summary: {summary}")
        return summary

    def find_duplicates(
        self,
        records: List[Dict[str, Any]],
        key_field: str
    ) -> List[Dict[str, Any]]:
        """
        Find duplicate identifiers in a record sequence.

        Args:
            records: Records to check
            key_field: Identifier field

        Returns:
            List of {"key": value, "count": n} for keys seen more than once
        """
        key_counts = defaultdict(int)

        for record in records:
            key_counts[self.extract_key(record, key_field)] += 1

        duplicates = [
            {"key": key, "count": count}
            for key, count in key_counts.items()
            if count > 1
        ]

        if duplicates:
            logger.warning(f"Found {len(duplicates)} duplicate keys for field '{key_field}'")

        return duplicates

    def build_key_index(
        self,
        records: List[Dict[str, Any]],
        key_field: str
    ) -> Dict[str, Dict[str, Any]]:
        """
        Build an identifier → record index.

        Args:
            records: Records to index
            key_field: Identifier field

        Returns:
            Dictionary mapping key → record (last occurrence wins)

        Raises:
            ValueError: If any record lacks the key field or has it NULL
        """
        index = {}

        for i, record in enumerate(records):
            try:
                index[self.extract_key(record, key_field)] = record
            except (KeyError, ValueError) as e:
                logger.error(f"Failed to extract key from record {i}: {e}")
                raise ValueError(f"Invalid record at index {i}: {e}") from e

        return index

    def extract_key(self, record: Dict[str, Any], key_field: str) -> str:
        """
        Extract the identifier of a record as a string.

        Raises:
            KeyError: If the key field is missing
            ValueError: If the key field is NULL
        """
        if key_field not in record:
            raise KeyError(
                f"Key field '{key_field}' not found in record. "
                f"Available fields: {list(record.keys())}"
            )

        value = record[key_field]
        if value is None:
            raise ValueError(f"Key field '{key_field}' has NULL value")

        return str(value)

    def _pair_by_position(self, desired, committed):
        paired = min(len(desired), len(committed))
        pairs = list(zip(desired[:paired], committed[:paired]))
        added = max(len(desired) - len(committed), 0)
        removed = max(len(committed) - len(desired), 0)
        return pairs, added, removed

    def _pair_by_key(self, desired, committed, key_field):
        desired_index = self.build_key_index(desired, key_field)
        committed_index = self.build_key_index(committed, key_field)

        common = [key for key in desired_index if key in committed_index]
        pairs = [(desired_index[key], committed_index[key]) for key in common]
        added = len(set(desired_index) - set(committed_index))
        removed = len(set(committed_index) - set(desired_index))
        return pairs, added, removed
