"""Project sync: deploys compiled entities and cleans up what drifted away.

Every deployed package, action and trigger carries a `whisk-managed`
annotation naming its project and the fingerprint of the manifest that
deployed it; that annotation is the only record of ownership.
"""

from project_sync.errors import DriftLookupError, SideEffectError, UnsupportedRuntimeError
from project_sync.deployer import EntityDeployer, EntityUndeployer
from project_sync.fingerprint import get_project_hash
from project_sync.engine import (
    ProjectSyncEngine,
    SyncResult,
    add_managed_project_annotations,
    deploy_project,
    find_project_hash_on_server,
    get_project_entities,
    undeploy_project,
)

__all__ = [
    "DriftLookupError",
    "SideEffectError",
    "UnsupportedRuntimeError",
    "EntityDeployer",
    "EntityUndeployer",
    "get_project_hash",
    "ProjectSyncEngine",
    "SyncResult",
    "add_managed_project_annotations",
    "deploy_project",
    "find_project_hash_on_server",
    "get_project_entities",
    "undeploy_project",
]
