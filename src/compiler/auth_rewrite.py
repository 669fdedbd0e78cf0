"""Rewrite of auth-gated web actions for the first-party platform.

A web action annotated with `require-adobe-auth` is deployed as:
- `__secured_<name>`: the original action, no longer web-exported
- `<name>`: a web sequence running the validator action first

Example:

    packages:
      helloworld:
        actions:
          hello:
            function: hello.js
            web: 'yes'
            annotations:
              require-adobe-auth: true

compiles as if it were:

    packages:
      helloworld:
        actions:
          __secured_hello:
            function: hello.js
            web: false
        sequences:
          hello:
            actions: '<validator>,helloworld/__secured_hello'
            web: 'yes'

Inputs are never modified; the rewrite works on deep copies.
"""

import copy
import logging
from typing import Optional

from compiler.errors import CompilationError
from manifest import DeploymentOverrides, PackageSpec, SequenceSpec, WebExportMode

logger = logging.getLogger(__name__)

AUTH_ANNOTATION = 'require-adobe-auth'
SECURED_PREFIX = '__secured_'


def _needs_rewrite(action) -> bool:
    return action.web.is_web and bool(action.annotations.get(AUTH_ANNOTATION))


def rewrite_auth_actions(
    packages: dict[str, PackageSpec],
    deployment: DeploymentOverrides,
    validator: Optional[str],
) -> tuple[dict[str, PackageSpec], DeploymentOverrides]:
    """Apply the auth rewrite to every package that needs it.

    Args:
        packages: Manifest packages (left untouched)
        deployment: Deployment overrides (left untouched)
        validator: Fully-qualified validator action path

    Returns:
        (new_packages, new_deployment); packages without auth-gated web
        actions are carried over unchanged

    Raises:
        CompilationError: If a renamed action or the synthesized sequence
            collides with an existing name
    """
    new_packages = copy.deepcopy(packages)
    new_deployment = copy.deepcopy(deployment)

    for pkg_name, pkg in new_packages.items():
        targets = [name for name, action in pkg.actions.items() if _needs_rewrite(action)]
        for action_name in targets:
            if not validator:
                raise CompilationError(
                    f"No auth validator configured for action '{pkg_name}/{action_name}'"
                )
            action = pkg.actions.pop(action_name)
            logger.debug(f"found annotation '{AUTH_ANNOTATION}' in action '{pkg_name}/{action_name}'")

            # 1. rename the action
            renamed = SECURED_PREFIX + action_name
            if renamed in pkg.actions:
                raise CompilationError(
                    f"Failed to rename the action '{pkg_name}/{action_name}' to "
                    f"'{pkg_name}/{renamed}': an action with the same name exists already."
                )
            pkg.actions[renamed] = action

            overrides = new_deployment.packages.get(pkg_name)
            if overrides is not None and action_name in overrides.actions:
                overrides.actions[renamed] = overrides.actions.pop(action_name)

            # 2. secure it: not web-exported, annotation dropped
            is_raw = action.web is WebExportMode.RAW
            action.web = WebExportMode.NO
            action.annotations.pop(AUTH_ANNOTATION, None)
            logger.debug(f"renamed action '{pkg_name}/{action_name}' to '{pkg_name}/{renamed}'")

            # 3. sequence under the original name
            if action_name in pkg.sequences:
                raise CompilationError(
                    f"The name '{pkg_name}/{action_name}' is defined both for an action "
                    f"and a sequence, it should be unique"
                )
            components = f'{validator},{pkg_name}/{renamed}'
            pkg.sequences[action_name] = SequenceSpec(
                actions=components,
                web=WebExportMode.RAW if is_raw else WebExportMode.YES,
            )
            logger.debug(f"defined new sequence '{pkg_name}/{action_name}': '{components}'")

    return new_packages, new_deployment
