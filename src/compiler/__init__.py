"""Manifest compiler package.

Turns a loaded manifest into the platform entities that the deployer sends
to the remote platform.
"""

from compiler.errors import CompilationError
from compiler.entities import (
    MANAGED_ANNOTATION_KEY,
    ActionEntity,
    Entities,
    PackageEntity,
    RouteEntity,
    RuleEntity,
    TriggerEntity,
    managed_annotation_value,
)
from compiler.compiler import CompileOptions, ManifestCompiler, compile_manifest

__all__ = [
    "CompilationError",
    "MANAGED_ANNOTATION_KEY",
    "ActionEntity",
    "Entities",
    "PackageEntity",
    "RouteEntity",
    "RuleEntity",
    "TriggerEntity",
    "managed_annotation_value",
    "CompileOptions",
    "ManifestCompiler",
    "compile_manifest",
]
