"""
Prometheus alert rules for ledger sync.

Rules cover failed reconciliations, webhook authentication failures,
commit retry pressure and stalled in-flight tasks.
"""

import logging
from collections import Counter
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)


class AlertRuleGenerator:
    """Builds alert rule groups over the SyncMetrics series."""

    def __init__(self, namespace: str = "ledger_sync"):
        """
        Initialize alert rule generator.

        Args:
            namespace: Metric prefix used by SyncMetrics
        """
        self.namespace = namespace

    def generate_alert_rules(self) -> Dict[str, Any]:
        """
        Build every rule group.

        Returns:
            {"groups": [...]} ready to dump as a Prometheus rules file
        """
        groups = [
            self._generate_reconciliation_alerts(),
            self._generate_webhook_alerts(),
            self._generate_commit_alerts(),
        ]

        logger.debug(f"Built {len(groups)} alert rule groups")
        return {"groups": groups}

    def _generate_reconciliation_alerts(self) -> Dict[str, Any]:
        ns = self.namespace
        return {
            "name": f"{ns}_reconciliation",
            "interval": "30s",
            "rules": [
                {
                    "alert": "ReconciliationFailing",
                    "expr": f'increase({ns}_reconciliation_runs_total{{status="failed"}}[15m]) > 0',
                    "for": "1m",
                    "labels": {
                        "severity": "warning",
                        "component": "reconciliation"
                    },
                    "annotations": {
                        "summary": "Reconciliation failures detected",
                        "description": "{{ $labels.collection }} failed to reconcile {{ $value }} times in the last 15 minutes"
                    }
                },
                {
                    "alert": "ReconciliationFailingPersistently",
                    "expr": (
                        f'increase({ns}_reconciliation_runs_total{{status="failed"}}[1h]) > 0 '
                        f'and increase({ns}_reconciliation_runs_total{{status="completed"}}[1h]) == 0'
                    ),
                    "for": "5m",
                    "labels": {
                        "severity": "critical",
                        "component": "reconciliation"
                    },
                    "annotations": {
                        "summary": "Collection has not synced for an hour",
                        "description": "Every reconciliation of {{ $labels.collection }} in the last hour failed. The ledger is stale."
                    }
                },
                {
                    "alert": "ReconciliationStuck",
                    "expr": f"{ns}_inflight_tasks > 0",
                    "for": "15m",
                    "labels": {
                        "severity": "warning",
                        "component": "scheduler"
                    },
                    "annotations": {
                        "summary": "Reconciliation task not finishing",
                        "description": "{{ $labels.collection }} has had an in-flight task for 15 minutes"
                    }
                }
            ]
        }

    def _generate_webhook_alerts(self) -> Dict[str, Any]:
        ns = self.namespace
        return {
            "name": f"{ns}_webhooks",
            "interval": "30s",
            "rules": [
                {
                    "alert": "WebhookAuthenticationFailures",
                    "expr": f'rate({ns}_webhooks_received_total{{status="invalid_mac"}}[5m]) > 0.1',
                    "for": "5m",
                    "labels": {
                        "severity": "warning",
                        "component": "webhook"
                    },
                    "annotations": {
                        "summary": "Webhooks failing MAC verification",
                        "description": "{{ $labels.collection }} webhooks are failing MAC verification. Check the shared secret."
                    }
                }
            ]
        }

    def _generate_commit_alerts(self) -> Dict[str, Any]:
        ns = self.namespace
        return {
            "name": f"{ns}_commits",
            "interval": "30s",
            "rules": [
                {
                    "alert": "HighCommitRetryRate",
                    "expr": f'rate({ns}_retries_total{{operation="commit"}}[10m]) > 0.05',
                    "for": "10m",
                    "labels": {
                        "severity": "warning",
                        "component": "ledger"
                    },
                    "annotations": {
                        "summary": "Ledger commits are being retried",
                        "description": "Commits are hitting transient errors (rate limiting or timeouts) at {{ $value }}/s"
                    }
                }
            ]
        }

    def export_to_yaml(self, output_file: str) -> None:
        """Write the rule groups to ``output_file`` as a Prometheus rules file."""
        with open(output_file, 'w') as f:
            f.write(self.to_yaml())

        logger.info(f"Wrote ledger sync alert rules to {output_file}")

    def to_yaml(self) -> str:
        return yaml.dump(self.generate_alert_rules(), default_flow_style=False, sort_keys=False)

    def get_alert_summary(self) -> Dict[str, int]:
        """
        Count groups and rules per severity.

        Returns:
            Dict with total_groups, total_alerts and one count per severity
        """
        groups = self.generate_alert_rules()["groups"]
        severities = Counter(
            rule["labels"].get("severity", "unknown")
            for group in groups
            for rule in group["rules"]
        )

        return {
            "total_groups": len(groups),
            "total_alerts": sum(severities.values()),
            "critical": severities["critical"],
            "warning": severities["warning"],
            "info": severities["info"],
        }
