"""Manifest loading for project deployment.

A manifest declares packages, each holding actions, sequences, triggers,
rules, HTTP APIs and package dependencies. An optional deployment file
mirrors the package structure and supplies extra or overriding inputs.

Both files are YAML. Packages are read from `project.packages` or from a
top-level `packages` key (top-level wins, as exported manifests sometimes
put both at the same level).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml

from config import ConfigError

logger = logging.getLogger(__name__)

MANIFEST_FILENAMES = ('manifest.yaml', 'manifest.yml')
DEPLOYMENT_FILENAMES = ('deployment.yaml', 'deployment.yml')


class WebExportMode(Enum):
    """How an action or sequence is exposed over HTTP."""
    NO = 'no'
    YES = 'yes'
    RAW = 'raw'

    @property
    def is_web(self) -> bool:
        return self is not WebExportMode.NO


_WEB_EXPORT_VALUES = {
    True: WebExportMode.YES,
    'yes': WebExportMode.YES,
    'true': WebExportMode.YES,
    'raw': WebExportMode.RAW,
    False: WebExportMode.NO,
    'no': WebExportMode.NO,
    'false': WebExportMode.NO,
}


def normalize_web_export(value: Any) -> WebExportMode:
    """Normalize a manifest `web` / `web-export` value.

    Accepts true|false|"yes"|"no"|"raw"; a missing value means NO.

    Raises:
        ConfigError: On any other value
    """
    if value is None or isinstance(value, WebExportMode):
        return value or WebExportMode.NO
    key = value.lower() if isinstance(value, str) else value
    if isinstance(key, bool) or isinstance(key, str):
        mode = _WEB_EXPORT_VALUES.get(key)
        if mode is not None:
            return mode
    raise ConfigError(f"Invalid web export value: {value!r} (expected true, false, yes, no or raw)")


def _web_value(data: dict) -> WebExportMode:
    # `web` takes priority over `web-export`
    if data.get('web') is not None:
        return normalize_web_export(data['web'])
    return normalize_web_export(data.get('web-export'))


def _mapping(data: Any, what: str) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{what} must be a mapping")
    return data


@dataclass
class ActionSpec:
    """An action declared in a manifest package.

    Attributes:
        function: Path to the action source or a pre-built zip
        runtime: Runtime kind (e.g., nodejs:18)
        docker: Docker image; runs as a blackbox action
        main: Entry point name
        limits: Resource limits as declared (memorySize/memory, logSize,
            timeout, concurrency/concurrentActivations)
        inputs: Default parameters
        web: Web export mode
        raw_http: Top-level raw-http flag, only honoured for web actions
        annotations: Declared annotations
    """
    function: str = ''
    runtime: Optional[str] = None
    docker: Optional[str] = None
    main: Optional[str] = None
    limits: Optional[dict] = None
    inputs: dict = field(default_factory=dict)
    web: WebExportMode = WebExportMode.NO
    raw_http: bool = False
    annotations: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> 'ActionSpec':
        """Create ActionSpec from dictionary."""
        return cls(
            function=data.get('function', ''),
            runtime=data.get('runtime'),
            docker=data.get('docker'),
            main=data.get('main'),
            limits=data.get('limits') or None,
            inputs=dict(_mapping(data.get('inputs'), 'Action inputs')),
            web=_web_value(data),
            raw_http=bool(data.get('raw-http', False)),
            annotations=dict(_mapping(data.get('annotations'), 'Action annotations')),
        )


@dataclass
class SequenceSpec:
    """A sequence: comma-joined ordered list of action names."""
    actions: Optional[str] = None
    web: WebExportMode = WebExportMode.NO
    annotations: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> 'SequenceSpec':
        return cls(
            actions=data.get('actions'),
            web=_web_value(data),
            annotations=dict(_mapping(data.get('annotations'), 'Sequence annotations')),
        )


@dataclass
class TriggerSpec:
    inputs: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)
    feed: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'TriggerSpec':
        return cls(
            inputs=dict(_mapping(data.get('inputs'), 'Trigger inputs')),
            annotations=dict(_mapping(data.get('annotations'), 'Trigger annotations')),
            feed=data.get('feed'),
        )


@dataclass
class RuleSpec:
    trigger: Optional[str] = None
    action: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'RuleSpec':
        return cls(trigger=data.get('trigger'), action=data.get('action'))


@dataclass
class DependencySpec:
    """A package binding; location is /namespace/package."""
    location: Optional[str] = None
    inputs: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> 'DependencySpec':
        return cls(
            location=data.get('location'),
            inputs=dict(_mapping(data.get('inputs'), 'Dependency inputs')),
        )


@dataclass
class PackageSpec:
    """A manifest package.

    Attributes:
        name: Package name
        actions: name -> ActionSpec
        sequences: name -> SequenceSpec
        triggers: name -> TriggerSpec
        rules: name -> RuleSpec
        apis: apiName -> basepath -> resource -> actionName -> {method, response}
        dependencies: name -> DependencySpec
        inputs: Package parameters
        public: Publish the package (shared)
        version: Informational, not stored remotely
        license: Informational, not stored remotely
    """
    name: str
    actions: dict[str, ActionSpec] = field(default_factory=dict)
    sequences: dict[str, SequenceSpec] = field(default_factory=dict)
    triggers: dict[str, TriggerSpec] = field(default_factory=dict)
    rules: dict[str, RuleSpec] = field(default_factory=dict)
    apis: dict[str, dict] = field(default_factory=dict)
    dependencies: dict[str, DependencySpec] = field(default_factory=dict)
    inputs: dict = field(default_factory=dict)
    public: bool = False
    version: Optional[str] = None
    license: Optional[str] = None

    @classmethod
    def from_dict(cls, name: str, data: Optional[dict]) -> 'PackageSpec':
        """Create PackageSpec from dictionary."""
        data = _mapping(data, f"Package '{name}'")
        return cls(
            name=name,
            actions={k: ActionSpec.from_dict(v or {})
                     for k, v in _mapping(data.get('actions'), 'actions').items()},
            sequences={k: SequenceSpec.from_dict(v or {})
                       for k, v in _mapping(data.get('sequences'), 'sequences').items()},
            triggers={k: TriggerSpec.from_dict(v or {})
                      for k, v in _mapping(data.get('triggers'), 'triggers').items()},
            rules={k: RuleSpec.from_dict(v or {})
                   for k, v in _mapping(data.get('rules'), 'rules').items()},
            apis=dict(_mapping(data.get('apis'), 'apis')),
            dependencies={k: DependencySpec.from_dict(v or {})
                          for k, v in _mapping(data.get('dependencies'), 'dependencies').items()},
            inputs=dict(_mapping(data.get('inputs'), 'Package inputs')),
            public=bool(data.get('public', False)),
            version=data.get('version'),
            license=data.get('license'),
        )


@dataclass
class PackageOverrides:
    """Deployment-file inputs for one package."""
    inputs: dict = field(default_factory=dict)
    actions: dict[str, dict] = field(default_factory=dict)
    dependencies: dict[str, dict] = field(default_factory=dict)
    triggers: dict[str, dict] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'PackageOverrides':
        data = _mapping(data, 'Deployment package')

        def inputs_of(section: str) -> dict[str, dict]:
            return {name: dict(_mapping((entry or {}).get('inputs'), f'{section} inputs'))
                    for name, entry in _mapping(data.get(section), section).items()}

        triggers = {}
        for name, entry in _mapping(data.get('triggers'), 'triggers').items():
            entry = entry or {}
            triggers[name] = {
                'inputs': dict(_mapping(entry.get('inputs'), 'Trigger inputs')),
                'annotations': dict(_mapping(entry.get('annotations'), 'Trigger annotations')),
            }

        return cls(
            inputs=dict(_mapping(data.get('inputs'), 'Package inputs')),
            actions=inputs_of('actions'),
            dependencies=inputs_of('dependencies'),
            triggers=triggers,
        )


@dataclass
class DeploymentOverrides:
    """Parsed deployment file. Entirely optional."""
    project_name: str = ''
    packages: dict[str, PackageOverrides] = field(default_factory=dict)
    source_path: Optional[Path] = None

    def package(self, name: str) -> PackageOverrides:
        """Overrides for a package (empty if none declared)."""
        return self.packages.get(name) or PackageOverrides()

    @property
    def trigger_overrides(self) -> dict[str, dict]:
        """Trigger name -> {inputs, annotations}, across all packages."""
        triggers: dict[str, dict] = {}
        for pkg in self.packages.values():
            triggers.update(pkg.triggers)
        return triggers

    @classmethod
    def from_dict(cls, data: Optional[dict], source_path: Optional[Path] = None) -> 'DeploymentOverrides':
        data = _mapping(data, 'Deployment file')
        project = _mapping(data.get('project'), 'Deployment project')
        packages = project.get('packages') or data.get('packages') or {}
        return cls(
            project_name=project.get('name') or '',
            packages={k: PackageOverrides.from_dict(v)
                      for k, v in _mapping(packages, 'Deployment packages').items()},
            source_path=source_path,
        )


@dataclass
class ProjectManifest:
    """A loaded manifest plus its optional deployment overrides.

    Attributes:
        packages: Package name -> PackageSpec, in manifest order
        project_name: Project name ('' if undeclared)
        deployment: Deployment-file overrides
        path: Manifest file path (recorded in managed annotations)
        content: Raw manifest text (fingerprinted on sync)
    """
    packages: dict[str, PackageSpec]
    project_name: str = ''
    deployment: DeploymentOverrides = field(default_factory=DeploymentOverrides)
    path: Optional[Path] = None
    content: str = ''

    @classmethod
    def from_dict(cls, data: dict, **kwargs) -> 'ProjectManifest':
        """Create ProjectManifest from a parsed manifest document."""
        data = _mapping(data, 'Manifest')
        project = _mapping(data.get('project'), 'Manifest project')
        packages = data.get('packages') or project.get('packages')
        if not packages:
            raise ConfigError("Manifest declares no packages")
        return cls(
            packages={name: PackageSpec.from_dict(name, pkg)
                      for name, pkg in _mapping(packages, 'packages').items()},
            project_name=project.get('name') or '',
            **kwargs,
        )


def _find_file(directory: Path, candidates: tuple[str, ...]) -> Optional[Path]:
    for name in candidates:
        path = directory / name
        if path.is_file():
            return path
    return None


def _load_yaml(path: Path) -> Any:
    try:
        with open(path, encoding='utf-8') as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")


def load_manifest(
    manifest_path: Optional[Path] = None,
    deployment_path: Optional[Path] = None,
    base_dir: Optional[Path] = None,
) -> ProjectManifest:
    """Load a manifest and its optional deployment file.

    Resolution when paths are not given (relative to base_dir, default cwd):
    1. manifest.yaml, then manifest.yml (required)
    2. deployment.yaml, then deployment.yml (optional)

    Args:
        manifest_path: Explicit manifest file
        deployment_path: Explicit deployment file
        base_dir: Directory searched for default file names

    Returns:
        ProjectManifest instance

    Raises:
        ConfigError: If the manifest is missing or invalid, or if both
            files name a project and the names differ
    """
    base_dir = base_dir or Path.cwd()

    if manifest_path is None:
        manifest_path = _find_file(base_dir, MANIFEST_FILENAMES)
        if manifest_path is None:
            raise ConfigError('Manifest file not found')
    manifest_path = Path(manifest_path)
    if not manifest_path.is_file():
        raise ConfigError(f"Manifest file not found: {manifest_path}")
    logger.debug(f"Using manifest file: {manifest_path}")

    if deployment_path is None:
        deployment_path = _find_file(base_dir, DEPLOYMENT_FILENAMES)

    deployment = DeploymentOverrides()
    if deployment_path is not None:
        deployment_path = Path(deployment_path)
        logger.debug(f"Using deployment file: {deployment_path}")
        deployment = DeploymentOverrides.from_dict(_load_yaml(deployment_path), source_path=deployment_path)

    content = manifest_path.read_text(encoding='utf-8')
    manifest = ProjectManifest.from_dict(
        _load_yaml(manifest_path),
        deployment=deployment,
        path=manifest_path,
        content=content,
    )

    if deployment_path is not None and manifest.project_name \
            and manifest.project_name != deployment.project_name:
        raise ConfigError(
            'The project name in the deployment file does not match the project name in the manifest file'
        )

    return manifest
