"""
Rendering and report generation for test results.
"""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .runner import Result


def pretty_print_result(test_name: str, error: Optional[BaseException]) -> str:
    if error is None:
        return f"- PASS: {test_name}"

    # Indent every line of the error below the test name.
    message = str(error).replace("\n", "\n\t\t\t")
    return f"- FAIL: {test_name}\n\t\t{message}"


def pretty_print_results(results: Sequence[Result], script_path: str) -> str:
    lines = [f'Test results: "{script_path}"']
    for result in results:
        lines.append(pretty_print_result(result.test_name, result.error))
    return "\n".join(lines) + "\n"


@dataclass
class SuiteReport:
    """Results of running one test script."""
    script_path: str
    results: List[Result] = field(default_factory=list)
    error: Optional[BaseException] = None
    execution_time_ms: float = 0.0

    @property
    def total_tests(self) -> int:
        return len(self.results)

    @property
    def passed_tests(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_tests(self) -> int:
        return self.total_tests - self.passed_tests

    @property
    def passed(self) -> bool:
        return self.error is None and self.failed_tests == 0


@dataclass
class TestReport:
    """Complete report over every script of a run."""
    __test__ = False

    timestamp: str
    random_seed: int
    total_suites: int
    total_tests: int
    total_passed: int
    total_failed: int
    total_errors: int
    execution_time_ms: float
    suites: List[SuiteReport]

    @property
    def passed(self) -> bool:
        return self.total_failed == 0 and self.total_errors == 0


class ReportGenerator:
    """Generates test run reports."""

    def __init__(self, result_dir: str):
        """
        Initialize report generator.

        Args:
            result_dir: Directory to write reports to
        """
        self.result_dir = result_dir
        os.makedirs(result_dir, exist_ok=True)

    def generate_report(
        self,
        suites: List[SuiteReport],
        random_seed: int,
        execution_time_ms: float,
    ) -> TestReport:
        """
        Aggregate suite reports into a run report.

        Args:
            suites: Reports of every script that was run
            random_seed: Seed the cases were shuffled with
            execution_time_ms: Total execution time

        Returns:
            TestReport object
        """
        return TestReport(
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            random_seed=random_seed,
            total_suites=len(suites),
            total_tests=sum(s.total_tests for s in suites),
            total_passed=sum(s.passed_tests for s in suites),
            total_failed=sum(s.failed_tests for s in suites),
            total_errors=sum(1 for s in suites if s.error is not None),
            execution_time_ms=execution_time_ms,
            suites=suites,
        )

    def write_json_report(
        self,
        report: TestReport,
        filename: str = "test-report.json",
    ) -> str:
        """
        Write report as JSON file.

        Returns:
            Path to written file
        """
        path = os.path.join(self.result_dir, filename)

        with open(path, "w") as f:
            json.dump(self._report_to_dict(report), f, indent=2)

        return path

    def write_summary(
        self,
        report: TestReport,
        filename: str = "test-summary.txt",
    ) -> str:
        """
        Write human-readable summary.

        Returns:
            Path to written file
        """
        path = os.path.join(self.result_dir, filename)

        lines = [
            "=" * 60,
            "Test Report",
            "=" * 60,
            f"Timestamp: {report.timestamp}",
            f"Seed: {report.random_seed}",
            "",
            "Results:",
            f"  Total Tests:  {report.total_tests}",
            f"  Passed:       {report.total_passed}",
            f"  Failed:       {report.total_failed}",
            f"  Errors:       {report.total_errors}",
            f"  Duration:     {report.execution_time_ms:.2f}ms",
            "",
        ]

        for suite in report.suites:
            lines.append(pretty_print_results(suite.results, suite.script_path).rstrip("\n"))
            if suite.error is not None:
                lines.append(f"  ERROR: {suite.error}")
            lines.append("")

        lines.append("=" * 60)

        with open(path, "w") as f:
            f.write("\n".join(lines))

        return path

    def print_summary(self, report: TestReport) -> None:
        """Print summary to console."""
        print("\n" + "=" * 60)
        print(f"Total:   {report.total_tests}")
        print(f"Passed:  {report.total_passed}")
        print(f"Failed:  {report.total_failed}")
        print(f"Errors:  {report.total_errors}")

        status = "PASSED" if report.passed else "FAILED"
        print()
        print(f"Overall: {status}")
        print("=" * 60)

    def _report_to_dict(self, report: TestReport) -> Dict[str, Any]:
        """Convert report to dictionary for JSON serialization."""
        return {
            "timestamp": report.timestamp,
            "random_seed": report.random_seed,
            "total_suites": report.total_suites,
            "total_tests": report.total_tests,
            "total_passed": report.total_passed,
            "total_failed": report.total_failed,
            "total_errors": report.total_errors,
            "execution_time_ms": report.execution_time_ms,
            "suites": [
                {
                    "script_path": s.script_path,
                    "error": str(s.error) if s.error is not None else None,
                    "execution_time_ms": s.execution_time_ms,
                    "results": [
                        {
                            "test_name": r.test_name,
                            "passed": r.passed,
                            "error": str(r.error) if r.error is not None else None,
                        }
                        for r in s.results
                    ],
                }
                for s in report.suites
            ],
        }
