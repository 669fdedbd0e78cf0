"""Ordered deploy and undeploy of compiled entities.

Every step runs strictly one entity at a time. A failed step raises and
leaves the steps before it applied; nothing is rolled back.

Deploy order: org id setup, packages and dependencies, actions, API
routes, triggers, rules. Undeploy order: actions, triggers, rules, API
routes, packages and dependencies.
"""

import copy
import logging
from typing import Awaitable, Callable, Optional

from compiler.entities import ActionEntity, Entities
from config import DEFAULT_PACKAGE_RESERVED_NAME, SUPPORTED_RUNTIMES
from project_sync.errors import SideEffectError, UnsupportedRuntimeError
from remote.client import RemoteClient, RemoteError
from remote.state_store import StateStoreError, register_org_id

logger = logging.getLogger(__name__)

ProgressLogger = Callable[[str], None]
OrgRegistrar = Callable[..., Awaitable[dict]]


def silent(message: str) -> None:
    """Progress logger that drops every line."""


def qualify_component(component: str, namespace: str) -> str:
    """Fully qualify a sequence component.

    pkg/action -> /ns/pkg/action, /pkg/action -> /ns/pkg/action,
    ns2/pkg/action and /ns2/pkg/action -> /ns2/pkg/action
    """
    normalized = component[1:] if component.startswith('/') else component
    if len(normalized.split('/')) > 2:
        return f'/{normalized}'
    return f'/{namespace}/{normalized}'


class EntityDeployer:
    """Deploys an entity set through a remote client.

    Args:
        client: Remote capability object
        log: Progress logger, receives one line per step
        validator: Auth validator action; sequences using it need the org id
        ims_org_id: Organization id registered for the validator
        auth: Namespace API key for the org id registration
        server_runtimes: Runtime kinds the server advertises; None skips
            the runtime check for kinds not known locally
        apihost: API host named in the unsupported runtime error
        register_org: Org id registration call
    """

    def __init__(
        self,
        client: RemoteClient,
        log: ProgressLogger = print,
        validator: Optional[str] = None,
        ims_org_id: Optional[str] = None,
        auth: str = '',
        server_runtimes: Optional[list[str]] = None,
        apihost: str = '',
        register_org: OrgRegistrar = register_org_id,
    ):
        self.client = client
        self.log = log
        self.validator = validator
        self.ims_org_id = ims_org_id
        self.auth = auth
        self.server_runtimes = server_runtimes
        self.apihost = apihost
        self.register_org = register_org

    def _uses_validator(self, actions: list[ActionEntity]) -> bool:
        if not self.validator:
            return False
        return any(a.is_sequence and self.validator in a.exec.get('components', []) for a in actions)

    async def setup_org_id(self, actions: list[ActionEntity]) -> None:
        """Register the org id if any sequence runs the auth validator.

        Raises:
            SideEffectError: If the org id is missing or could not be stored
        """
        if not self._uses_validator(actions):
            return
        if not self.ims_org_id:
            raise SideEffectError('imsOrgId must be defined when using the Adobe headless auth validator')
        try:
            await self.register_org(self.client.namespace, self.auth, self.ims_org_id)
        except StateStoreError as e:
            raise SideEffectError(str(e)) from e

    def check_runtime(self, action: ActionEntity) -> None:
        kind = action.kind
        if not kind or kind == 'blackbox' or kind.lower() in SUPPORTED_RUNTIMES:
            return
        if self.server_runtimes is None:
            logger.debug(f"No server runtime list, not checking kind {kind} of {action.name}")
            return
        if kind not in self.server_runtimes:
            runtimes = ','.join(sorted(self.server_runtimes, reverse=True))
            raise UnsupportedRuntimeError(
                f"Unsupported node version '{kind}' in action {action.name}.\n"
                f"Supported runtimes on {self.apihost}: {runtimes}"
            )
        logger.debug(f"Local node kinds mismatch with server supported kinds {self.server_runtimes}")

    async def deploy(self, entities: Entities) -> None:
        """Deploy all entities in dependency order.

        The entity set is not modified; namespace qualification happens on
        copies.
        """
        ns = self.client.namespace
        await self.setup_org_id(entities.actions)

        for pkg in entities.pkg_and_deps:
            if pkg.name == DEFAULT_PACKAGE_RESERVED_NAME:
                self.log(f"Info: Skipped creating package [{pkg.name}] because it is a reserved package.")
                continue
            self.log(f"Info: Deploying package [{pkg.name}]...")
            await self.client.packages.update(pkg.to_dict())
            self.log(f"Info: package [{pkg.name}] has been successfully deployed.\n")

        for action in entities.actions:
            self.check_runtime(action)
            action = copy.deepcopy(action)
            if action.is_sequence:
                action.exec['components'] = [qualify_component(c, ns) for c in action.exec['components']]
            prefix = f'{DEFAULT_PACKAGE_RESERVED_NAME}/'
            if action.name.startswith(prefix):
                action.name = action.name[len(prefix):]
            self.log(f"Info: Deploying action [{action.name}]...")
            await self.client.actions.update(action.to_dict())
            self.log(f"Info: action [{action.name}] has been successfully deployed.\n")

        for route in entities.apis:
            self.log(f"Info: Deploying API route {route.info} for API [{route.name}]...")
            await self.client.routes.create(route.to_dict())
            self.log(f"Info: API route {route.info} successfully deployed.\n")

        for trigger in entities.triggers:
            self.log(f"Info: Deploying trigger [{trigger.name}]...")
            await self.client.triggers.update(trigger.to_dict())
            self.log(f"Info: trigger [{trigger.name}] has been successfully deployed.\n")

        for rule in entities.rules:
            self.log(f"Info: Deploying rule [{rule.name}]...")
            body = rule.to_dict()
            body['action'] = f'/{ns}/{rule.action}'
            await self.client.rules.update(body)
            self.log(f"Info: rule [{rule.name}] has been successfully deployed.\n")

        self.log('Success: Deployment completed successfully.')


class EntityUndeployer:
    """Deletes an entity set by name. Only names are needed.

    A route that is already gone is skipped; any other failed delete
    propagates.
    """

    def __init__(self, client: RemoteClient, log: ProgressLogger = print):
        self.client = client
        self.log = log

    async def undeploy(self, entities: Entities) -> None:
        for action in entities.actions:
            self.log(f"Info: Undeploying action [{action.name}]...")
            await self.client.actions.delete({'name': action.name})
            self.log(f"Info: action [{action.name}] has been successfully undeployed.\n")

        for trigger in entities.triggers:
            self.log(f"Info: Undeploying trigger [{trigger.name}]...")
            await self.client.triggers.delete({'name': trigger.name})
            self.log(f"Info: trigger [{trigger.name}] has been successfully undeployed.\n")

        for rule in entities.rules:
            self.log(f"Info: Undeploying rule [{rule.name}]...")
            await self.client.rules.delete({'name': rule.name})
            self.log(f"Info: rule [{rule.name}] has been successfully undeployed.\n")

        for route in entities.apis:
            self.log(f"Info: Deleting API route {route.info} for API [{route.name}]...")
            try:
                await self.client.routes.delete({'basepath': route.basepath, 'relpath': route.relpath})
            except RemoteError as e:
                if not e.is_not_found:
                    raise
                logger.debug(f"API route {route.basepath}{route.relpath} already deleted")
            self.log(f"Info: API route {route.info} successfully deleted.\n")

        for pkg in entities.pkg_and_deps:
            self.log(f"Info: Undeploying package [{pkg.name}]...")
            await self.client.packages.delete({'name': pkg.name})
            self.log(f"Info: package [{pkg.name}] has been successfully undeployed.\n")

        self.log('Success: Undeployment completed successfully.')
