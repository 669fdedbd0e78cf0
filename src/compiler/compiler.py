"""Manifest compiler.

Turns manifest packages plus deployment overrides into the flat entity
lists that the deployer sends to the platform. Per package, in order:

1. package entity and dependency bindings
2. actions (code, exec, limits, annotations, params)
3. sequences
4. triggers
5. rules (validated against everything compiled so far)
6. API routes (validated against this package's actions and sequences)

For the first-party platform host the auth rewrite runs once beforehand
(see compiler.auth_rewrite).
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from compiler.auth_rewrite import rewrite_auth_actions
from compiler.entities import (
    ActionEntity,
    Entities,
    PackageEntity,
    RouteEntity,
    RuleEntity,
    TriggerEntity,
)
from compiler.errors import CompilationError
from config import DEFAULT_ENV, DEFAULT_VALIDATORS, FIRST_PARTY_APIHOST, RuntimeConfig
from manifest import (
    ActionSpec,
    DeploymentOverrides,
    PackageSpec,
    ProjectManifest,
    SequenceSpec,
    WebExportMode,
)
from params import create_key_value_array_from_object, merge_inputs

logger = logging.getLogger(__name__)

# Annotations copied only onto web-exported actions
WEB_ONLY_ANNOTATIONS = ('require-whisk-auth', 'raw-http', 'final')

DEFAULT_LIMITS = {
    'memory': 256,
    'logs': 10,
    'timeout': 60000,
}

# /namespace/package
LOCATION_PATTERN = re.compile(r'^/([^/]+)/([^/]+)$')


def web_annotations(mode: WebExportMode) -> dict:
    """web-export / raw-http annotations for a web export mode."""
    if mode is WebExportMode.YES:
        return {'web-export': True}
    if mode is WebExportMode.RAW:
        return {'web-export': True, 'raw-http': True}
    return {'web-export': False, 'raw-http': False}


def build_annotations(annotations: dict, mode: WebExportMode, raw_http: bool = False) -> dict:
    """Compute the annotation map of an action or sequence.

    Args:
        annotations: Annotations declared in the manifest
        mode: Web export mode
        raw_http: Top-level raw-http flag of the action
    """
    result = {k: v for k, v in annotations.items() if k not in WEB_ONLY_ANNOTATIONS}
    result.update(web_annotations(mode))
    if mode.is_web:
        if raw_http:
            result['raw-http'] = True
        for key in WEB_ONLY_ANNOTATIONS:
            if key in annotations:
                result[key] = annotations[key]
    return result


def build_limits(limits: Optional[dict]) -> Optional[dict]:
    """Normalize declared limits; None if the manifest declares none."""
    if not limits:
        return None
    result = {
        'memory': limits.get('memorySize') or limits.get('memory') or DEFAULT_LIMITS['memory'],
        'logs': limits.get('logSize') or DEFAULT_LIMITS['logs'],
        'timeout': limits.get('timeout') or DEFAULT_LIMITS['timeout'],
    }
    if concurrency := limits.get('concurrentActivations') or limits.get('concurrency'):
        result['concurrency'] = concurrency
    return result


def build_exec(spec: ActionSpec) -> Optional[dict]:
    if not (spec.main or spec.docker or spec.runtime):
        return None
    exec_: dict = {}
    if spec.main:
        exec_['main'] = spec.main
    if spec.docker:
        exec_['kind'] = 'blackbox'
        exec_['image'] = spec.docker
    elif spec.runtime:
        exec_['kind'] = spec.runtime
    return exec_


def parse_location(dep_name: str, location: Optional[str]) -> dict:
    """Parse a dependency location into a {namespace, name} binding."""
    match = LOCATION_PATTERN.match(location) if isinstance(location, str) else None
    if match is None:
        raise CompilationError(
            f'Invalid or missing property "location" in the manifest for this dependency: {dep_name}'
        )
    return {'namespace': match.group(1), 'name': match.group(2)}


def sequence_components(spec: SequenceSpec, package_name: str, sequence_name: str) -> list[str]:
    """Split a sequence's action list, qualifying bare names with the package."""
    if not spec.actions:
        raise CompilationError(f"Actions for the sequence '{package_name}/{sequence_name}' not provided.")
    components = []
    for item in spec.actions.split(','):
        item = item.strip()
        if not item:
            continue
        components.append(item if '/' in item else f'{package_name}/{item}')
    return components


@dataclass
class CompileOptions:
    """Platform-dependent compilation settings.

    Attributes:
        apihost: Target API host; the first-party host enables the auth rewrite
        env: Deploy environment, selects the validator
        validators: env -> validator action path
        action_code: Read action code files (False skips all file reads)
        base_dir: Directory that relative `function` paths resolve against
    """
    apihost: str = ''
    env: str = DEFAULT_ENV
    validators: dict = field(default_factory=lambda: dict(DEFAULT_VALIDATORS))
    action_code: bool = True
    base_dir: Optional[Path] = None

    @property
    def validator(self) -> Optional[str]:
        return self.validators.get(self.env)

    @classmethod
    def from_config(cls, config: RuntimeConfig, **kwargs) -> 'CompileOptions':
        """Build options from the runtime configuration."""
        return cls(
            apihost=config.apihost,
            env=config.env,
            validators=dict(config.validators),
            **kwargs,
        )


@dataclass
class _Known:
    """Short names compiled so far, for rule and route validation."""
    actions: set[str] = field(default_factory=set)
    sequences: set[str] = field(default_factory=set)
    triggers: set[str] = field(default_factory=set)


class ManifestCompiler:
    """Compiles manifest packages into platform entities.

    Stateless between calls; every compile() starts from the given inputs
    and never modifies them.
    """

    def __init__(self, options: Optional[CompileOptions] = None):
        self.options = options or CompileOptions()

    def compile(
        self,
        packages: dict[str, PackageSpec],
        deployment: Optional[DeploymentOverrides] = None,
        params: Optional[dict] = None,
        names_only: bool = False,
    ) -> Entities:
        """Compile packages into entities.

        Args:
            packages: Manifest packages
            deployment: Deployment-file overrides
            params: Call-site params, highest input precedence
            names_only: Only produce entity identities (undeploy planning)

        Returns:
            Entities

        Raises:
            CompilationError: On any unresolved or malformed reference
        """
        deployment = deployment or DeploymentOverrides()
        params = params or {}

        if self.options.apihost.rstrip('/') == FIRST_PARTY_APIHOST:
            packages, deployment = rewrite_auth_actions(packages, deployment, self.options.validator)

        entities = Entities()
        known = _Known()
        trigger_overrides = deployment.trigger_overrides

        for pkg_name, pkg in packages.items():
            overrides = deployment.package(pkg_name)

            collisions = set(pkg.actions) & set(pkg.sequences)
            if collisions:
                name = sorted(collisions)[0]
                raise CompilationError(
                    f"The name '{pkg_name}/{name}' is defined both for an action and a sequence, "
                    f"it should be unique"
                )

            entities.pkg_and_deps.append(self._package(pkg, overrides.inputs, params, names_only))
            for dep_name, dep in pkg.dependencies.items():
                if names_only:
                    entities.pkg_and_deps.append(PackageEntity(name=dep_name))
                    continue
                inputs = merge_inputs(dep.inputs, overrides.dependencies.get(dep_name), params)
                entities.pkg_and_deps.append(PackageEntity(
                    name=dep_name,
                    binding=parse_location(dep_name, dep.location),
                    parameters=create_key_value_array_from_object(inputs) if inputs else None,
                ))

            for action_name, action in pkg.actions.items():
                full_name = f'{pkg_name}/{action_name}'
                if names_only:
                    entities.actions.append(ActionEntity(name=full_name))
                    continue
                entities.actions.append(
                    self._action(full_name, action, overrides.actions.get(action_name), params))
                known.actions.add(action_name)

            for seq_name, seq in pkg.sequences.items():
                full_name = f'{pkg_name}/{seq_name}'
                if names_only:
                    entities.actions.append(ActionEntity(name=full_name))
                    continue
                entities.actions.append(ActionEntity(
                    name=full_name,
                    exec={'kind': 'sequence', 'components': sequence_components(seq, pkg_name, seq_name)},
                    annotations=build_annotations(seq.annotations, seq.web),
                ))
                known.sequences.add(seq_name)

            # triggers need only a name, so they are always created
            for trigger_name, trigger in pkg.triggers.items():
                if names_only:
                    entities.triggers.append(TriggerEntity(name=trigger_name))
                    continue
                entities.triggers.append(
                    self._trigger(trigger_name, trigger, trigger_overrides.get(trigger_name) or {}))
                known.triggers.add(trigger_name)

            for rule_name, rule in pkg.rules.items():
                entities.rules.append(self._rule(pkg_name, rule_name, rule, known, names_only))

            for api_name in pkg.apis:
                entities.apis.extend(self._routes(pkg, api_name, known, names_only))

        return entities

    def _package(self, pkg: PackageSpec, deployment_inputs: dict, params: dict,
                 names_only: bool) -> PackageEntity:
        entity = PackageEntity(name=pkg.name)
        if names_only:
            return entity
        if pkg.public:
            entity.publish = True
        inputs = merge_inputs(pkg.inputs, deployment_inputs, params)
        if inputs:
            entity.parameters = create_key_value_array_from_object(inputs)
        return entity

    def _read_code(self, name: str, function: str, binary: bool):
        if not function:
            raise CompilationError(f'Invalid or missing property "function" in the manifest for this action: {name}')
        path = Path(function)
        if self.options.base_dir is not None and not path.is_absolute():
            path = self.options.base_dir / path
        try:
            if binary:
                return path.read_bytes()
            return path.read_text(encoding='utf-8')
        except OSError as e:
            raise CompilationError(f"Cannot read code for action {name}: {e}") from e

    def _action(self, full_name: str, spec: ActionSpec, deployment_inputs: Optional[dict],
                params: dict) -> ActionEntity:
        is_zip = spec.function.endswith('.zip')
        if is_zip and not spec.runtime and not spec.docker:
            raise CompilationError(
                f'Invalid or missing property "runtime" in the manifest for this action: {full_name}'
            )

        entity = ActionEntity(name=full_name)
        if self.options.action_code:
            entity.code = self._read_code(full_name, spec.function, binary=is_zip)
        entity.exec = build_exec(spec)
        entity.limits = build_limits(spec.limits)
        entity.annotations = build_annotations(spec.annotations, spec.web, spec.raw_http)

        inputs = merge_inputs(spec.inputs, deployment_inputs, params)
        if inputs:
            entity.params = inputs
        return entity

    def _trigger(self, name: str, spec, overrides: dict) -> TriggerEntity:
        entity = TriggerEntity(name=name, feed=spec.feed)
        inputs = merge_inputs(spec.inputs, overrides.get('inputs'))
        if inputs:
            entity.parameters = create_key_value_array_from_object(inputs)
        annotations = {**spec.annotations, **(overrides.get('annotations') or {})}
        if annotations:
            entity.annotations = create_key_value_array_from_object(annotations)
        return entity

    def _rule(self, pkg_name: str, rule_name: str, rule, known: _Known, names_only: bool) -> RuleEntity:
        if names_only:
            return RuleEntity(name=rule_name)
        if not rule.trigger or not rule.action:
            raise CompilationError('Trigger and Action are both required for rule creation')

        action = rule.action.split('/')[-1]
        if (action in known.actions or action in known.sequences) and rule.trigger in known.triggers:
            return RuleEntity(name=rule_name, trigger=rule.trigger, action=f'{pkg_name}/{action}')
        raise CompilationError('Action/Trigger provided in the rule not found in manifest file')

    def _routes(self, pkg: PackageSpec, api_name: str, known: _Known, names_only: bool) -> list[RouteEntity]:
        base_paths = pkg.apis.get(api_name)
        if not base_paths or not isinstance(base_paths, dict):
            raise CompilationError('Arguments to create API not provided')

        routes = []
        for base_path, resources in base_paths.items():
            for resource, actions in (resources or {}).items():
                for action_name, verb in (actions or {}).items():
                    route = RouteEntity(name=api_name, basepath=f'/{base_path}', relpath=f'/{resource}')
                    if names_only:
                        routes.append(route)
                        continue

                    target = pkg.actions.get(action_name) if action_name in known.actions else None
                    if target is None and action_name in known.sequences:
                        target = pkg.sequences.get(action_name)
                    if target is None:
                        raise CompilationError('Action provided in the api not present in the package')
                    if not target.web.is_web:
                        raise CompilationError('Action or sequence provided in api is not a web action')

                    verb = verb or {}
                    route.action = f'{pkg.name}/{action_name}'
                    route.operation = verb.get('method')
                    route.response_type = verb.get('response') or verb.get('response-type') or 'json'
                    routes.append(route)
        return routes


def compile_manifest(
    manifest: ProjectManifest,
    params: Optional[dict] = None,
    names_only: bool = False,
    options: Optional[CompileOptions] = None,
) -> Entities:
    """Compile a loaded manifest with its own deployment overrides.

    Relative function paths resolve against the manifest's directory
    unless options.base_dir says otherwise.
    """
    options = options or CompileOptions()
    if options.base_dir is None and manifest.path is not None:
        options = CompileOptions(
            apihost=options.apihost,
            env=options.env,
            validators=options.validators,
            action_code=options.action_code,
            base_dir=Path(manifest.path).parent,
        )
    return ManifestCompiler(options).compile(manifest.packages, manifest.deployment, params, names_only)
