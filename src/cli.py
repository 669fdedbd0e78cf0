#!/usr/bin/env python3
"""CLI entry point for runtime-deployer.

Verbs:
- deploy: Sync a project manifest to the platform
- undeploy: Remove the packages a manifest deployed
- plan: Compile a manifest offline and list its entities
"""

import logging
import sys
from importlib.metadata import PackageNotFoundError, version

# Verb commands
VERB_COMMANDS = {
    "deploy": "Deploy a project and remove entities it no longer declares",
    "undeploy": "Undeploy the packages of a project",
    "plan": "Compile a manifest offline and list its entities",
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version() -> str:
    """Installed package version, 'dev' when running from a checkout."""
    try:
        return version('runtime-deployer')
    except PackageNotFoundError:
        return 'dev'


def print_usage():
    """Print top-level usage showing verb commands."""
    print(f"runtime-deployer {get_version()}")
    print()
    print("Usage: runtime-deployer <verb> [options]")
    print()
    print("Commands:")
    for verb, desc in VERB_COMMANDS.items():
        print(f"  {verb:<12} {desc}")
    print()
    print("Run 'runtime-deployer <verb> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  runtime-deployer deploy -m manifest.yaml")
    print("  runtime-deployer deploy --action hello --param name world")
    print("  runtime-deployer undeploy --package my-app --yes")
    print("  runtime-deployer plan --json-output")


def dispatch_verb(verb: str, argv: list) -> int:
    """Dispatch a verb to its handler.

    Args:
        verb: Verb name
        argv: Arguments after the verb

    Returns:
        Exit code
    """
    if verb == "deploy":
        from project_sync.cli import deploy_main
        rc: int = deploy_main(argv)
        return rc
    if verb == "undeploy":
        from project_sync.cli import undeploy_main
        rc = undeploy_main(argv)
        return rc
    if verb == "plan":
        from project_sync.cli import plan_main
        rc = plan_main(argv)
        return rc

    print(f"Error: Unknown command '{verb}'")
    print_usage()
    return 1


def main(argv=None) -> int:
    """CLI entry point."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        print_usage()
        return 0
    if argv[0] in ('--help', '-h'):
        print_usage()
        return 0
    if argv[0] == '--version':
        print(f"runtime-deployer {get_version()}")
        return 0

    return dispatch_verb(argv[0], argv[1:])


if __name__ == '__main__':
    sys.exit(main())
