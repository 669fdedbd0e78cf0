"""Normalized platform entities produced by the manifest compiler.

Each entity serializes with to_dict() into the shape the remote client
expects for create/update calls.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional, Union

MANAGED_ANNOTATION_KEY = 'whisk-managed'


def managed_annotation_value(manifest_path: str, project_name: str, project_hash: str) -> dict:
    """Value of the whisk-managed annotation; key order is part of the wire shape."""
    return {
        'file': manifest_path,
        'projectDeps': [],
        'projectHash': project_hash,
        'projectName': project_name,
    }


@dataclass
class PackageEntity:
    """A package or a package binding (dependency).

    Attributes:
        name: Package name
        publish: Shared package flag (None when undeclared)
        parameters: Ordered [{key, value}] list
        binding: {namespace, name} for dependencies
        annotations: Annotation map (managed annotation lands here)
    """
    name: str
    publish: Optional[bool] = None
    parameters: Optional[list[dict]] = None
    binding: Optional[dict] = None
    annotations: Optional[dict] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'name': self.name}
        package: dict[str, Any] = {}
        if self.publish is not None:
            package['publish'] = self.publish
        if self.binding is not None:
            package['binding'] = dict(self.binding)
        if self.parameters is not None:
            package['parameters'] = list(self.parameters)
        if package:
            d['package'] = package
        if self.annotations is not None:
            d['annotations'] = dict(self.annotations)
        return d


@dataclass
class ActionEntity:
    """An action or sequence.

    Attributes:
        name: Fully-qualified `<package>/<name>`
        code: Source text, zip bytes, or None (sequences, names-only, no code)
        exec: {kind, image, main} or {kind: sequence, components}
        limits: {memory, logs, timeout[, concurrency]} or None
        annotations: Annotation map
        params: Resolved default parameters
    """
    name: str
    code: Union[str, bytes, None] = None
    exec: Optional[dict] = None
    limits: Optional[dict] = None
    annotations: Optional[dict] = None
    params: Optional[dict] = None

    @property
    def is_sequence(self) -> bool:
        return bool(self.exec) and self.exec.get('kind') == 'sequence'

    @property
    def kind(self) -> Optional[str]:
        return self.exec.get('kind') if self.exec else None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'name': self.name}
        if self.code is not None:
            d['action'] = self.code
        if self.exec is not None:
            d['exec'] = copy.deepcopy(self.exec)
        if self.limits is not None:
            d['limits'] = dict(self.limits)
        if self.annotations is not None:
            d['annotations'] = copy.deepcopy(self.annotations)
        if self.params is not None:
            d['params'] = copy.deepcopy(self.params)
        return d


@dataclass
class TriggerEntity:
    """A trigger; annotations are an ordered [{key, value}] list."""
    name: str
    parameters: Optional[list[dict]] = None
    annotations: Optional[list[dict]] = None
    feed: Optional[str] = None

    def to_dict(self) -> dict:
        trigger: dict[str, Any] = {}
        if self.parameters is not None:
            trigger['parameters'] = copy.deepcopy(self.parameters)
        if self.annotations is not None:
            trigger['annotations'] = copy.deepcopy(self.annotations)
        if self.feed is not None:
            trigger['feed'] = self.feed
        return {'name': self.name, 'trigger': trigger}


@dataclass
class RuleEntity:
    name: str
    trigger: Optional[str] = None
    action: Optional[str] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'name': self.name}
        if self.trigger is not None:
            d['trigger'] = self.trigger
        if self.action is not None:
            d['action'] = self.action
        return d


@dataclass
class RouteEntity:
    """An API gateway route: one (basepath, relpath, verb) per entity."""
    name: str
    basepath: str
    relpath: str
    action: Optional[str] = None
    operation: Optional[str] = None
    response_type: Optional[str] = None

    @property
    def info(self) -> str:
        """Human-readable route summary for progress lines."""
        return f"[{self.operation} {self.basepath}{self.relpath} [{self.action}]]"

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'basepath': self.basepath,
            'relpath': self.relpath,
        }
        if self.action is not None:
            d['action'] = self.action
            d['operation'] = self.operation
            d['responsetype'] = self.response_type
        return d


@dataclass
class Entities:
    """All entities compiled from a manifest, grouped by deploy phase."""
    pkg_and_deps: list[PackageEntity] = field(default_factory=list)
    actions: list[ActionEntity] = field(default_factory=list)
    triggers: list[TriggerEntity] = field(default_factory=list)
    rules: list[RuleEntity] = field(default_factory=list)
    apis: list[RouteEntity] = field(default_factory=list)

    def copy(self) -> 'Entities':
        """Deep copy, so stamping or rewriting never touches the caller's set."""
        return copy.deepcopy(self)

    @property
    def count(self) -> int:
        return (len(self.pkg_and_deps) + len(self.actions) + len(self.triggers)
                + len(self.rules) + len(self.apis))

    def to_dict(self) -> dict:
        return {
            'pkgAndDeps': [p.to_dict() for p in self.pkg_and_deps],
            'actions': [a.to_dict() for a in self.actions],
            'triggers': [t.to_dict() for t in self.triggers],
            'rules': [r.to_dict() for r in self.rules],
            'apis': [r.to_dict() for r in self.apis],
        }
