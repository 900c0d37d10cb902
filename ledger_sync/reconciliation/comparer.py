"""
State Comparer for Ledger Sync Reconciliation

Provides canonical deep-equality between desired records (from the table
store) and committed records (from the ledger). Values are normalized and
serialized as sorted-key JSON, so field order never produces a false
difference while record order still does.
"""

import json
import logging
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

logger = logging.getLogger(__name__)


class StateComparer:
    """
    Compares record sequences and individual records.

    Handles normalization of the value types the stores hand back and
    provides detailed per-field comparison results for logging.
    """

    def __init__(self, ignore_fields: Optional[List[str]] = None):
        """
        Initialize the comparer.

        Args:
            ignore_fields: Fields excluded from every comparison
        """
        self.ignore_fields = set(ignore_fields or [])
        logger.debug("Initialized StateComparer")

    def canonicalize(self, records: List[Dict[str, Any]]) -> str:
        """
        Serialize a record sequence to canonical JSON.

        Args:
            records: Ordered records

        Returns:
            Sorted-key, whitespace-free JSON string
        """
        normalized = [self.normalize_record(record) for record in records]
        return json.dumps(normalized, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)

    def states_equal(
        self,
        desired: List[Dict[str, Any]],
        committed: List[Dict[str, Any]]
    ) -> bool:
        """
        Order-sensitive deep equality of two record sequences.

        Args:
            desired: Records from the table store
            committed: Records from the ledger

        Returns:
            True if the canonical forms are identical
        """
        if len(desired) != len(committed):
            return False
        return self.canonicalize(desired) == self.canonicalize(committed)

    def records_equal(self, record1: Dict[str, Any], record2: Dict[str, Any]) -> bool:
        return self.canonicalize([record1]) == self.canonicalize([record2])

    def compare_records_detailed(
        self,
        desired: Dict[str, Any],
        committed: Dict[str, Any],
        ignore_fields: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Compare records and return detailed comparison result.

        Args:
            desired: Desired record
            committed: Committed record
            ignore_fields: Extra fields to ignore

        Returns:
            Dictionary with:
            - is_equal: bool
            - matching_fields: List[str]
            - differing_fields: List[str] (includes fields present on one side only)
            - differences: Dict[str, Dict[str, Any]]
        """
        norm_desired = self.normalize_record(desired)
        norm_committed = self.normalize_record(committed)

        ignored = set(ignore_fields or [])
        all_fields = (set(norm_desired) | set(norm_committed)) - ignored

        matching_fields = []
        differing_fields = []
        differences = {}

        for field in all_fields:
            desired_value = norm_desired.get(field)
            committed_value = norm_committed.get(field)

            if field in norm_desired and field in norm_committed and desired_value == committed_value:
                matching_fields.append(field)
            else:
                differing_fields.append(field)
                differences[field] = {
                    "desired": desired_value,
                    "committed": committed_value
                }

        return {
            "is_equal": len(differing_fields) == 0,
            "matching_fields": sorted(matching_fields),
            "differing_fields": sorted(differing_fields),
            "differences": differences
        }

    def normalize_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize a record for comparison.

        Handles:
        - UUID objects → strings
        - Decimal → int or float
        - datetime → ISO-8601 in UTC
        - nested lists and mappings

        Args:
            record: Record mapping

        Returns:
            Normalized record with ignored fields removed
        """
        return {
            str(key): self._normalize_value(value)
            for key, value in record.items()
            if key not in self.ignore_fields
        }

    def _normalize_value(self, value: Any) -> Any:
        if value is None:
            return None

        if isinstance(value, UUID):
            return str(value)

        if isinstance(value, Decimal):
            normalized = value.normalize()
            if normalized == normalized.to_integral_value():
                return int(normalized)
            return float(normalized)

        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).isoformat()

        # Whole floats compare equal to ints once serialized
        if isinstance(value, float) and value.is_integer():
            return int(value)

        if isinstance(value, (list, tuple)):
            return [self._normalize_value(item) for item in value]

        if isinstance(value, dict):
            return {str(k): self._normalize_value(v) for k, v in value.items()}

        return value
