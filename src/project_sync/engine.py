"""Drift-aware project sync.

A project is every package, action, trigger and rule that carries a
`whisk-managed` annotation naming it. The annotation also records the
fingerprint of the manifest that deployed the entity, which is how the
next sync tells whether the manifest changed.

Sync of a project:
1. discover the fingerprint recorded remotely (packages, actions,
   triggers, rules, first match wins)
2. fingerprint the local manifest
3. stamp a copy of the entities with the managed annotation
4. deploy the stamped copy
5. if the fingerprint changed and orphan deletion is on, silently
   undeploy everything still stamped with the old fingerprint

Nothing runs step 5 unless step 4 fully succeeded.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from compiler.compiler import CompileOptions, compile_manifest
from compiler.entities import (
    MANAGED_ANNOTATION_KEY,
    ActionEntity,
    Entities,
    PackageEntity,
    RuleEntity,
    TriggerEntity,
    managed_annotation_value,
)
from config import ConfigError, DEFAULT_PACKAGE_RESERVED_NAME
from manifest import ProjectManifest
from project_sync.deployer import EntityDeployer, EntityUndeployer, ProgressLogger, silent
from project_sync.errors import DriftLookupError
from project_sync.fingerprint import get_project_hash
from remote.client import RemoteClient, RemoteError, parse_package_name

logger = logging.getLogger(__name__)

# Lookup order for the recorded fingerprint
DISCOVERY_ORDER = ('packages', 'actions', 'triggers', 'rules')

# Package sections a filtered deploy can restrict
FILTER_KEYS = ('actions', 'apis', 'triggers', 'rules', 'sequences', 'dependencies')


def _managed_value(entity: dict) -> Optional[dict]:
    for annotation in entity.get('annotations') or []:
        if annotation.get('key') == MANAGED_ANNOTATION_KEY:
            value = annotation.get('value')
            return value if isinstance(value, dict) else None
    return None


async def find_project_hash_on_server(client: RemoteClient, project_name: str) -> str:
    """Find the fingerprint recorded for a project.

    Lists packages, then actions, then triggers, then rules, and stops at
    the first entity whose managed annotation names the project.

    Returns:
        The recorded fingerprint, '' if the project was never deployed
    """
    for kind in DISCOVERY_ORDER:
        for entity in await getattr(client, kind).list():
            value = _managed_value(entity)
            if value is not None and value.get('projectName') == project_name:
                logger.debug(f"Found project {project_name} on {kind[:-1]} {entity.get('name')}")
                return value.get('projectHash', '')
    return ''


async def get_project_entities(project: str, is_project_hash: bool, client: RemoteClient) -> Entities:
    """Get the deployed entities of a managed project.

    The four listings run concurrently. Action names are returned as
    `<package>/<name>` when the action lives in a package. API routes
    can't carry annotations, so `apis` is always empty.

    Args:
        project: Project name or fingerprint
        is_project_hash: Match on the fingerprint instead of the name
        client: Remote client
    """
    attribute = 'projectHash' if is_project_hash else 'projectName'

    async def matching(kind: str) -> list[dict]:
        found = []
        for entity in await getattr(client, kind).list():
            value = _managed_value(entity)
            if value is None or value.get(attribute) != project:
                continue
            name = entity['name']
            if kind == 'actions':
                ns_and_pkg = entity.get('namespace', '').split('/')
                if len(ns_and_pkg) > 1:
                    name = f'{ns_and_pkg[1]}/{name}'
            found.append({**entity, 'name': name})
        return found

    actions, triggers, rules, packages = await asyncio.gather(
        *(matching(kind) for kind in ('actions', 'triggers', 'rules', 'packages'))
    )
    return Entities(
        pkg_and_deps=[PackageEntity(name=p['name']) for p in packages],
        actions=[ActionEntity(name=a['name']) for a in actions],
        triggers=[TriggerEntity(name=t['name']) for t in triggers],
        rules=[RuleEntity(name=r['name']) for r in rules],
        apis=[],
    )


def add_managed_project_annotations(
    entities: Entities,
    manifest_path: str,
    project_name: str,
    project_hash: str,
) -> Entities:
    """Stamp entities with the whisk-managed annotation, in place.

    Packages and actions get it in their annotation map; triggers get a
    {key, value} item appended to their annotation list.
    """
    for pkg in entities.pkg_and_deps:
        pkg.annotations = pkg.annotations or {}
        pkg.annotations[MANAGED_ANNOTATION_KEY] = managed_annotation_value(manifest_path, project_name, project_hash)
    for action in entities.actions:
        action.annotations = action.annotations or {}
        action.annotations[MANAGED_ANNOTATION_KEY] = managed_annotation_value(
            manifest_path, project_name, project_hash)
    for trigger in entities.triggers:
        trigger.annotations = trigger.annotations or []
        trigger.annotations.append({
            'key': MANAGED_ANNOTATION_KEY,
            'value': managed_annotation_value(manifest_path, project_name, project_hash),
        })
    return entities


@dataclass
class SyncResult:
    """Outcome of one sync.

    Attributes:
        project_name: Synced project
        project_hash: Fingerprint of the deployed manifest
        previous_hash: Fingerprint found remotely before deploying ('' if none)
        deployed: The stamped entities that were deployed
        deleted: Orphans that were undeployed (empty if no cleanup ran)
    """
    project_name: str
    project_hash: str
    previous_hash: str
    deployed: Entities
    deleted: Entities = field(default_factory=Entities)

    @property
    def drifted(self) -> bool:
        return self.project_hash != self.previous_hash


class ProjectSyncEngine:
    """Syncs compiled entities of a project with the remote platform.

    Args:
        client: Remote client
        deployer: Entity deployer; defaults to one printing through `log`
        log: Progress logger
        **deployer_options: EntityDeployer settings (validator, ims_org_id,
            auth, ...) used when no deployer is given
    """

    def __init__(
        self,
        client: RemoteClient,
        deployer: Optional[EntityDeployer] = None,
        log: ProgressLogger = print,
        **deployer_options,
    ):
        self.client = client
        self.deployer = deployer or EntityDeployer(client, log=log, **deployer_options)

    async def discover(self, project_name: str) -> str:
        """Fingerprint recorded for the project.

        Raises:
            DriftLookupError: If the remote lookup fails
        """
        try:
            return await find_project_hash_on_server(self.client, project_name)
        except RemoteError as e:
            raise DriftLookupError(f"Failed to look up deployed project {project_name}: {e}") from e

    async def sync_project(
        self,
        project_name: str,
        manifest_path: Union[str, Path],
        manifest_content: str,
        entities: Entities,
        delete_orphans: bool = True,
    ) -> SyncResult:
        """Deploy entities and clean up what the previous deploy left behind.

        The given entities are not modified.

        Raises:
            DriftLookupError: Before anything is deployed
            SideEffectError: Before any action is deployed
            RemoteError: From any deploy or cleanup step
        """
        previous_hash = await self.discover(project_name)
        project_hash = get_project_hash(manifest_content, manifest_path)
        logger.debug(f"Project {project_name}: remote hash '{previous_hash}', local hash '{project_hash}'")

        stamped = add_managed_project_annotations(entities.copy(), str(manifest_path), project_name, project_hash)
        await self.deployer.deploy(stamped)

        result = SyncResult(project_name, project_hash, previous_hash, stamped)
        if delete_orphans and result.drifted:
            result.deleted = await get_project_entities(previous_hash, True, self.client)
            logger.info(f"Removing {result.deleted.count} entities of the previous deployment")
            await EntityUndeployer(self.client, log=silent).undeploy(result.deleted)
        return result


def filter_package(manifest: ProjectManifest, package_name: str, filter_entities: dict) -> ProjectManifest:
    """Restrict one package to the named entities.

    Args:
        manifest: Loaded manifest (left untouched)
        package_name: Package to restrict
        filter_entities: section -> names to keep, sections from FILTER_KEYS;
            a section missing from the filter keeps nothing

    Returns:
        Filtered copy of the manifest
    """
    if package_name not in manifest.packages:
        raise ConfigError(f"Package {package_name} not found in manifest")
    manifest = copy.deepcopy(manifest)
    pkg = manifest.packages[package_name]
    for key in FILTER_KEYS:
        keep = filter_entities.get(key) or []
        section = getattr(pkg, key)
        setattr(pkg, key, {name: value for name, value in section.items() if name in keep})
    return manifest


def project_name_for(manifest: ProjectManifest) -> str:
    """Project name of a manifest, defaulting to its first package."""
    return manifest.project_name or next(iter(manifest.packages))


async def deploy_project(
    manifest: ProjectManifest,
    client: RemoteClient,
    deployer: Optional[EntityDeployer] = None,
    params: Optional[dict] = None,
    options: Optional[CompileOptions] = None,
    filter_entities: Optional[dict] = None,
    package_name: Optional[str] = None,
    delete_orphans: bool = True,
    log: ProgressLogger = print,
    ims_org_id: Optional[str] = None,
    auth: str = '',
) -> SyncResult:
    """Compile a manifest and sync it.

    A filtered deploy restricts `package_name` (default: the first
    package) to the entities named in `filter_entities` and never deletes
    orphans.

    Without a deployer, the default one checks sequences against the
    validator of `options` and registers `ims_org_id` with `auth`.
    """
    options = options or CompileOptions()
    project_name = project_name_for(manifest)
    if filter_entities is not None:
        manifest = filter_package(manifest, package_name or next(iter(manifest.packages)), filter_entities)
        delete_orphans = False

    entities = compile_manifest(manifest, params=params, options=options)
    engine = ProjectSyncEngine(
        client,
        deployer=deployer,
        log=log,
        validator=options.validator,
        ims_org_id=ims_org_id,
        auth=auth,
    )
    return await engine.sync_project(
        project_name,
        manifest.path or '',
        manifest.content,
        entities,
        delete_orphans=delete_orphans,
    )


async def _deployed_package_actions(client: RemoteClient, package_name: str) -> list[dict]:
    if package_name == DEFAULT_PACKAGE_RESERVED_NAME:
        # actions in no package list their namespace without a /package part
        return [a for a in await client.actions.list()
                if parse_package_name(a.get('namespace', ''))['namespace'] == '_']
    return (await client.packages.get({'name': package_name})).get('actions') or []


async def undeploy_project(
    package_name: str,
    manifest: ProjectManifest,
    client: RemoteClient,
    log: ProgressLogger = print,
) -> Entities:
    """Undeploy everything a package deployment created.

    Gathers the managed entities of the project named after the package,
    every action still in the deployed package, and the rules and routes
    the manifest declares, then undeploys them.

    Raises:
        ConfigError: If the package was never deployed
        RemoteError: From any undeploy step
    """
    try:
        deployed_actions = await _deployed_package_actions(client, package_name)
    except RemoteError as e:
        if e.is_not_found:
            raise ConfigError(
                f"cannot undeploy actions for package {package_name}, as it was not deployed."
            ) from e
        raise

    entities = await get_project_entities(package_name, False, client)

    # leftover actions would make the package delete fail
    known = {a.name for a in entities.actions}
    for action in deployed_actions:
        name = action['name']
        if package_name != DEFAULT_PACKAGE_RESERVED_NAME:
            name = f'{package_name}/{name}'
        if name not in known:
            entities.actions.append(ActionEntity(name=name))
            known.add(name)

    # rules and routes carry no managed annotation
    declared = compile_manifest(manifest, names_only=True, options=CompileOptions(action_code=False))
    entities.apis = declared.apis
    entities.rules = declared.rules

    await EntityUndeployer(client, log=log).undeploy(entities)
    return entities
