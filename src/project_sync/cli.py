"""CLI handlers for project verbs (deploy, undeploy, plan).

Usage:
    runtime-deployer deploy [-m manifest.yaml] [-d deployment.yaml] [--param KEY VALUE]
                            [--no-delete] [--action NAME] [--dry-run] [--json-output]
    runtime-deployer undeploy [-m manifest.yaml] [--package NAME] [--yes]
    runtime-deployer plan [-m manifest.yaml] [--json-output]
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from functools import partial
from typing import Optional

from compiler import CompilationError, CompileOptions, Entities, compile_manifest
from config import ConfigError, RuntimeConfig, load_runtime_config
from manifest import ProjectManifest, load_manifest
from params import get_key_value_object_from_merged_parameters
from project_sync.deployer import EntityDeployer
from project_sync.engine import deploy_project, project_name_for, undeploy_project
from project_sync.errors import DriftLookupError, SideEffectError, UnsupportedRuntimeError
from project_sync.fingerprint import get_project_hash
from readiness import ReadinessError, fetch_supported_runtimes, validate_api_host
from remote import OpenWhiskClient, RemoteError

logger = logging.getLogger(__name__)

# Failures reported as a one-line error
COMMAND_ERRORS = (
    ConfigError,
    CompilationError,
    RemoteError,
    DriftLookupError,
    SideEffectError,
    UnsupportedRuntimeError,
    ValueError,
)


def _common_parser(verb: str) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'runtime-deployer {verb}',
        description=f'{verb.capitalize()} a project from its manifest',
    )
    parser.add_argument(
        '--manifest', '-m',
        help='Path to manifest file (default: manifest.yaml in the current directory)',
    )
    parser.add_argument(
        '--deployment', '-d',
        help='Path to deployment file (default: deployment.yaml if present)',
    )
    parser.add_argument(
        '--config',
        help='Runtime config file (default: $RUNTIME_CONFIG, ./.runtime.yaml)',
    )
    parser.add_argument(
        '--apihost',
        help='Platform API host (override: RUNTIME_APIHOST env var)',
    )
    parser.add_argument(
        '--namespace',
        help='Target namespace (override: RUNTIME_NAMESPACE env var)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _add_param_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--param', '-p',
        nargs=2,
        action='append',
        metavar=('KEY', 'VALUE'),
        help='Parameter overriding a declared input (repeatable)',
    )
    parser.add_argument(
        '--param-file', '-P',
        help='JSON file of parameters; --param values win',
    )


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _progress(json_output: bool):
    """Progress printer; stdout stays machine-readable in JSON mode."""
    if json_output:
        return partial(print, file=sys.stderr)
    return print


def _load(args) -> ProjectManifest:
    return load_manifest(manifest_path=args.manifest, deployment_path=args.deployment)


def _load_config(args) -> RuntimeConfig:
    config = load_runtime_config(
        config_file=args.config,
        apihost=args.apihost,
        namespace=args.namespace,
    )
    config.check_credentials()
    return config


def _call_params(args) -> dict:
    flags = [item for pair in (args.param or []) for item in pair]
    return get_key_value_object_from_merged_parameters(flags, args.param_file)


def _run_preflight(args, config: RuntimeConfig) -> tuple[Optional[int], Optional[list[str]]]:
    """Run preflight checks for verb commands.

    Returns:
        (exit code or None if checks pass, server runtime kinds or None)
    """
    if args.skip_preflight or args.dry_run:
        return None, None

    verify = not config.ignore_certs
    success, message = validate_api_host(config.apihost, verify=verify)
    if not success:
        print("\nPre-flight validation failed:")
        print(f"  ✗ {message}")
        print("\nUse --skip-preflight to bypass these checks")
        print()
        return 1, None
    logger.info(message)

    try:
        runtimes = fetch_supported_runtimes(config.apihost, verify=verify)
    except ReadinessError as e:
        logger.warning(f"Could not get supported runtimes, skipping runtime check: {e}")
        return None, None
    logger.info("Pre-flight validation passed")
    return None, runtimes


def _entity_summary(entities: Entities) -> dict:
    return {
        'packages': [p.name for p in entities.pkg_and_deps],
        'actions': [a.name for a in entities.actions],
        'triggers': [t.name for t in entities.triggers],
        'rules': [r.name for r in entities.rules],
        'apis': [f'{r.basepath}{r.relpath}' for r in entities.apis],
    }


def _print_plan(summary: dict) -> None:
    for kind, names in summary.items():
        if not names:
            continue
        print(f"{kind}:")
        for name in names:
            print(f"  {name}")


def _emit_json(verb: str, success: bool, duration: float, **fields) -> None:
    """Emit structured JSON output."""
    output = {
        'verb': verb,
        'success': success,
        'duration_seconds': round(duration, 2),
        **fields,
    }
    print(json.dumps(output, indent=2))


def deploy_main(argv: list) -> int:
    """Handle 'deploy' verb."""
    parser = _common_parser('deploy')
    _add_param_args(parser)
    parser.add_argument(
        '--no-delete',
        action='store_true',
        help='Keep entities of the previous deployment that left the manifest',
    )
    parser.add_argument(
        '--package',
        help='Package --action applies to (default: first package)',
    )
    parser.add_argument(
        '--action', '-a',
        action='append',
        help='Deploy only this action (repeatable); implies --no-delete',
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Compile and show what would be deployed',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip pre-flight validation checks',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)
    log = _progress(args.json_output)

    start = time.time()
    try:
        manifest = _load(args)
        config = _load_config(args)
        params = _call_params(args)
        options = CompileOptions.from_config(config)

        if args.dry_run:
            entities = compile_manifest(manifest, params=params, options=options)
            summary = _entity_summary(entities)
            project_hash = get_project_hash(manifest.content, manifest.path or '')
            if args.json_output:
                _emit_json('deploy', True, time.time() - start, dry_run=True,
                           project=project_name_for(manifest), project_hash=project_hash, entities=summary)
            else:
                print(f"Would deploy project {project_name_for(manifest)} ({project_hash}):")
                _print_plan(summary)
            return 0

        preflight_rc, server_runtimes = _run_preflight(args, config)
        if preflight_rc is not None:
            return preflight_rc

        logger.info(f"Deploying project {project_name_for(manifest)} to {config.apihost} ({config.namespace})")
        filter_entities = {'actions': args.action} if args.action else None
        result = asyncio.run(_deploy(manifest, config, params, options, filter_entities,
                                     args.package, not args.no_delete, server_runtimes, log))
    except COMMAND_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.json_output:
            _emit_json('deploy', False, time.time() - start, error=str(e))
        return 1

    if args.json_output:
        _emit_json(
            'deploy', True, time.time() - start,
            project=result.project_name,
            project_hash=result.project_hash,
            previous_hash=result.previous_hash,
            entities=_entity_summary(result.deployed),
            deleted=_entity_summary(result.deleted),
        )
    return 0


async def _deploy(manifest, config, params, options, filter_entities, package_name,
                  delete_orphans, server_runtimes, log):
    async with OpenWhiskClient.from_config(config) as client:
        deployer = EntityDeployer(
            client,
            log=log,
            validator=config.validator,
            ims_org_id=config.ims_org_id,
            auth=config.auth,
            server_runtimes=server_runtimes,
            apihost=config.apihost,
        )
        return await deploy_project(
            manifest,
            client,
            deployer=deployer,
            params=params,
            options=options,
            filter_entities=filter_entities,
            package_name=package_name,
            delete_orphans=delete_orphans,
            log=log,
        )


def undeploy_main(argv: list) -> int:
    """Handle 'undeploy' verb."""
    parser = _common_parser('undeploy')
    parser.add_argument(
        '--package',
        action='append',
        help='Package to undeploy (repeatable, default: every manifest package)',
    )
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation prompt',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)
    log = _progress(args.json_output)

    start = time.time()
    try:
        manifest = _load(args)
        config = _load_config(args)
        packages = args.package or list(manifest.packages)

        if not args.yes:
            print(f"\nWARNING: This will undeploy package(s) {', '.join(packages)} "
                  f"from namespace '{config.namespace}'.")
            print("This action cannot be undone.")
            try:
                response = input("Continue? [y/N] ").strip().lower()
            except EOFError:
                response = ''
            if response != 'y':
                print("Aborted.")
                return 1

        removed = asyncio.run(_undeploy(manifest, config, packages, log))
    except COMMAND_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.json_output:
            _emit_json('undeploy', False, time.time() - start, error=str(e))
        return 1

    if args.json_output:
        _emit_json('undeploy', True, time.time() - start,
                   packages={name: _entity_summary(entities) for name, entities in removed.items()})
    return 0


async def _undeploy(manifest, config, packages, log) -> dict:
    removed = {}
    async with OpenWhiskClient.from_config(config) as client:
        for package_name in packages:
            logger.info(f"Undeploying package {package_name} from {config.namespace}")
            removed[package_name] = await undeploy_project(package_name, manifest, client, log=log)
    return removed


def plan_main(argv: list) -> int:
    """Handle 'plan' verb: compile offline and list the entities."""
    parser = _common_parser('plan')
    _add_param_args(parser)
    parser.add_argument(
        '--names-only',
        action='store_true',
        help='Skip code loading and field population',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    start = time.time()
    try:
        manifest = _load(args)
        config = load_runtime_config(config_file=args.config, apihost=args.apihost, namespace=args.namespace)
        options = CompileOptions.from_config(config, action_code=not args.names_only)
        entities = compile_manifest(manifest, params=_call_params(args), names_only=args.names_only,
                                    options=options)
    except COMMAND_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    project_hash = get_project_hash(manifest.content, manifest.path or '')
    if args.json_output:
        _emit_json('plan', True, time.time() - start,
                   project=project_name_for(manifest), project_hash=project_hash,
                   entities=_entity_summary(entities))
    else:
        print(f"Project {project_name_for(manifest)} ({project_hash}):")
        _print_plan(_entity_summary(entities))
    return 0
