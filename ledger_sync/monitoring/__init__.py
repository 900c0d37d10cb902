"""
Monitoring Module for Ledger Sync

Usage:
    from ledger_sync.monitoring import SyncMetrics, AlertRuleGenerator

    metrics = SyncMetrics()
    metrics.record_run("agenda", "completed", duration_seconds=2.4)

    rules = AlertRuleGenerator().generate_alert_rules()
"""

from ledger_sync.monitoring.metrics import SyncMetrics
from ledger_sync.monitoring.alerts import AlertRuleGenerator

__all__ = [
    "SyncMetrics",
    "AlertRuleGenerator",
]
