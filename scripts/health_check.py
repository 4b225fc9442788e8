#!/usr/bin/env python3
"""
Health check script for the search index synchronizer.

This script performs one-shot checks on everything the synchronizer needs:
- Configuration validation
- PostgreSQL connectivity
- Tracked tables present in every configured chain schema
- Meilisearch availability

Can be used for monitoring, alerting, or pre-deployment validation. The
running service exposes the same database check on its /health endpoint.

Usage:
    python scripts/health_check.py [--config CONFIG_PATH] [--json]

Exit codes:
    0: All checks passed
    1: One or more checks failed
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone

import structlog

from index_sync.models.config import AppConfig
from index_sync.storage.postgres import PostgresSource
from index_sync.storage.search_index import SearchIndexClient
from index_sync.utils.config_loader import ConfigLoader

log = structlog.stdlib.get_logger()


class HealthChecker:
    """Performs health checks on the synchronizer's dependencies."""

    def __init__(self, config_path: str | None = None):
        """
        Initialize health checker.

        Args:
            config_path: Optional path to configuration file
        """
        self.config_path = config_path
        self.config: AppConfig | None = None
        self.results: dict[str, dict] = {}

    def check_configuration(self) -> bool:
        check_name = "configuration"
        log.info("checking_configuration")

        try:
            config_loader = ConfigLoader()
            self.config = config_loader.load_config(self.config_path)
            warnings = config_loader.validate_config(self.config)

            self.results[check_name] = {
                "status": "warn" if warnings else "pass",
                "message": "; ".join(warnings) or "Configuration loaded successfully",
                "details": {
                    "env": self.config.env,
                    "chains": [c.value for c in self.config.postgres.change_detection.chains],
                    "mode": self.config.postgres.change_detection.mode.value,
                    "meilisearch_host": str(self.config.meilisearch.host),
                },
            }
            return True

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Configuration error: {str(e)}",
                "details": {},
            }
            return False

    async def check_postgres(self) -> bool:
        """
        Check database connectivity and the tracked tables of every chain.

        Returns:
            True if the database is reachable and no table is missing
        """
        assert self.config is not None
        log.info("checking_postgres")

        try:
            source = await PostgresSource.create(self.config.postgres)
        except Exception as e:
            self.results["postgres_connectivity"] = {
                "status": "fail",
                "message": f"PostgreSQL connection failed: {str(e)}",
                "details": {},
            }
            return False

        try:
            latency_ms = await source.ping()
            self.results["postgres_connectivity"] = {
                "status": "pass",
                "message": "Successfully connected to PostgreSQL",
                "details": {"latency_ms": latency_ms},
            }

            missing = await source.missing_tables(self.config.postgres.change_detection.chains)
            self.results["chain_tables"] = {
                "status": "fail" if missing else "pass",
                "message": "Missing tracked tables" if missing else "All tracked tables exist",
                "details": {"missing": missing} if missing else {},
            }
            return not missing

        except Exception as e:
            self.results["chain_tables"] = {
                "status": "fail",
                "message": f"PostgreSQL query failed: {str(e)}",
                "details": {},
            }
            return False
        finally:
            await source.close()

    async def check_meilisearch(self) -> bool:
        assert self.config is not None
        check_name = "meilisearch"
        log.info("checking_meilisearch")

        client = SearchIndexClient.from_config(self.config.meilisearch)
        try:
            available = await client.health()
            self.results[check_name] = {
                "status": "pass" if available else "fail",
                "message": "Meilisearch is available" if available else "Meilisearch unavailable",
                "details": {"host": str(self.config.meilisearch.host)},
            }
            return available

        except Exception as e:
            self.results[check_name] = {
                "status": "fail",
                "message": f"Meilisearch error: {str(e)}",
                "details": {},
            }
            return False
        finally:
            await client.aclose()

    async def run_all_checks(self) -> bool:
        """
        Run all health checks; connectivity checks are skipped without a valid configuration.

        Returns:
            True if all checks passed, False otherwise
        """
        if not self.check_configuration():
            return False

        results = await asyncio.gather(
            self.check_postgres(), self.check_meilisearch(), return_exceptions=True
        )

        all_passed = True
        for result in results:
            if isinstance(result, BaseException):
                log.error("check_failed_with_exception", error=str(result))
                all_passed = False
            elif not result:
                all_passed = False

        return all_passed

    def get_summary(self) -> dict:
        total_checks = len(self.results)
        passed = sum(1 for r in self.results.values() if r["status"] == "pass")
        failed = sum(1 for r in self.results.values() if r["status"] == "fail")
        warnings = sum(1 for r in self.results.values() if r["status"] == "warn")

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "overall_status": "healthy" if failed == 0 else "unhealthy",
            "total_checks": total_checks,
            "passed": passed,
            "failed": failed,
            "warnings": warnings,
            "checks": self.results,
        }


def main():
    """Main entry point for health check script."""
    parser = argparse.ArgumentParser(description="Health check for the search index synchronizer")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results in JSON format",
    )

    args = parser.parse_args()

    checker = HealthChecker(config_path=args.config)
    all_passed = asyncio.run(checker.run_all_checks())
    summary = checker.get_summary()

    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        print("\n" + "=" * 60)
        print("HEALTH CHECK SUMMARY")
        print("=" * 60)
        print(f"Timestamp: {summary['timestamp']}")
        print(f"Overall Status: {summary['overall_status'].upper()}")
        print(f"Total Checks: {summary['total_checks']}")
        print(f"Passed: {summary['passed']}")
        print(f"Failed: {summary['failed']}")
        print(f"Warnings: {summary['warnings']}")
        print("\n" + "-" * 60)
        print("DETAILED RESULTS")
        print("-" * 60)

        for check_name, result in summary["checks"].items():
            status_symbol = {"pass": "✓", "fail": "✗", "warn": "⚠"}.get(result["status"], "?")

            print(f"\n{status_symbol} {check_name.replace('_', ' ').title()}")
            print(f"  Status: {result['status'].upper()}")
            print(f"  Message: {result['message']}")

            if result["details"]:
                print("  Details:")
                for key, value in result["details"].items():
                    print(f"    - {key}: {value}")

        print("\n" + "=" * 60)

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
