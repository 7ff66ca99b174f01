"""
chaintest command line.

Runs the test functions of one or more test scripts. The language runtime and
the ledger virtual machine are plugged in by reference (``module:attribute``);
callables are invoked without arguments to build the instance.
"""

import importlib
import logging
import sys
import time
from pathlib import Path
from typing import Any, List, Optional, Tuple

import click

from .config import RunnerConfig
from .emulator import Emulator
from .errors import ErrorCode, ChainTestError
from .locations import Location, StringLocation
from .reporter import ReportGenerator, SuiteReport, pretty_print_results
from .runner import ImportResolver, TestRunner
from .backend import FileResolver

logger = logging.getLogger(__name__)


def load_object(reference: str) -> Any:
    """Resolve ``module:attribute`` and instantiate it when it is callable."""
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(f"expected module:attribute, got {reference!r}")

    obj: Any = importlib.import_module(module_name)
    for part in attribute.split("."):
        obj = getattr(obj, part)
    return obj() if callable(obj) else obj


def file_resolver_for(base_dir: Path) -> FileResolver:
    def resolve(path: str) -> str:
        return (base_dir / path).read_text()

    return resolve


def import_resolver_for(base_dir: Path) -> ImportResolver:
    def resolve(location: Location) -> str:
        if isinstance(location, StringLocation):
            return (base_dir / location.path).read_text()
        raise ChainTestError(ErrorCode.CONTRACT_NOT_FOUND, f"cannot resolve import {location}")

    return resolve


def run_script(
    runtime: Any,
    vm: Any,
    path: Path,
    config: RunnerConfig,
    test_name: Optional[str],
) -> Tuple[SuiteReport, List[str]]:
    base_dir = path.parent
    code = path.read_text()
    with (
        TestRunner(runtime, lambda: Emulator(vm))
        .with_import_resolver(import_resolver_for(base_dir))
        .with_file_resolver(file_resolver_for(base_dir))
        .with_random_seed(config.random_seed)
        .with_configuration(config.configuration())
    ) as runner:
        start = time.time()
        if test_name is not None:
            result, error = runner.run_test(code, test_name)
            results = [result] if result is not None else []
        else:
            results, error = runner.run_tests(code)
        elapsed = (time.time() - start) * 1000

        return SuiteReport(str(path), results, error, elapsed), runner.logs()


@click.command()
@click.argument(
    "scripts",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--runtime",
    "runtime_ref",
    required=True,
    help="module:attribute of the language runtime",
)
@click.option(
    "--vm",
    "vm_ref",
    required=True,
    help="module:attribute of the ledger virtual machine",
)
@click.option(
    "--seed",
    type=int,
    default=None,
    help="Shuffle test functions with this seed",
)
@click.option(
    "--test",
    "test_name",
    default=None,
    help="Run only this test function",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML configuration file",
)
@click.option(
    "--result-dir",
    default=None,
    help="Directory to write reports to",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
def main(
    scripts: Tuple[Path, ...],
    runtime_ref: str,
    vm_ref: str,
    seed: Optional[int],
    test_name: Optional[str],
    config_path: Optional[str],
    result_dir: Optional[str],
    verbose: bool,
) -> None:
    """Run the test functions of SCRIPTS."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    # Load config from environment, then override with file and CLI args
    config = RunnerConfig.from_env()
    if config_path:
        config = RunnerConfig.from_yaml(config_path, base=config)
    if seed is not None:
        config.random_seed = seed
    if result_dir:
        config.result_dir = result_dir
    if verbose:
        config.verbose = True
    if config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    runtime = load_object(runtime_ref)
    vm = load_object(vm_ref)

    start = time.time()
    suites = []
    for path in scripts:
        suite, logs = run_script(runtime, vm, path, config, test_name)
        suites.append(suite)

        click.echo(pretty_print_results(suite.results, str(path)))
        if suite.error is not None:
            logger.error(f"{path}: {suite.error}")
        for line in logs:
            logger.debug(f"{path}: {line}")

    if config.result_dir:
        reporter = ReportGenerator(config.result_dir)
        report = reporter.generate_report(
            suites, config.random_seed, (time.time() - start) * 1000
        )
        reporter.write_json_report(report)
        reporter.write_summary(report)
        reporter.print_summary(report)

    sys.exit(0 if all(suite.passed for suite in suites) else 1)


if __name__ == "__main__":
    main()
