"""Remote platform capability interfaces.

The deployer and sync engine only ever talk to the platform through a
RemoteClient: one ResourceClient per resource kind, each exposing
create/update/delete/get/list over plain dicts.

Entity dicts sent to create/update are the to_dict() shapes from
compiler.entities. Dicts returned by list() carry at least `name`,
`namespace` and `annotations` (a [{key, value}] list).
"""

from typing import Optional, Protocol, runtime_checkable


class RemoteError(Exception):
    """A failed call against the remote platform.

    Attributes:
        status_code: HTTP status code, None if no response was received
        body: Response body text
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


@runtime_checkable
class ResourceClient(Protocol):
    """Operations on one resource kind."""

    async def create(self, entity: dict) -> dict: ...

    async def update(self, entity: dict) -> dict: ...

    async def delete(self, ref: dict) -> dict: ...

    async def get(self, ref: dict) -> dict: ...

    async def list(self, **options) -> list[dict]: ...


@runtime_checkable
class RemoteClient(Protocol):
    """The remote capability object.

    `feeds` only needs create and delete and is meant to be used
    through remote.triggers.TriggerClient.
    """

    namespace: str
    packages: ResourceClient
    actions: ResourceClient
    triggers: ResourceClient
    rules: ResourceClient
    routes: ResourceClient
    feeds: ResourceClient


def parse_package_name(name: str) -> dict:
    """Split a package reference into namespace and name.

    Accepted forms: `[/]ns/pkg`, `pkg`, `[/]_/pkg`. A bare name gets the
    default namespace `_`.

    Returns:
        {'namespace': ..., 'name': ...}

    Raises:
        ValueError: On any other form
    """
    leading = name.startswith('/')
    parts = (name[1:] if leading else name).split('/')
    n = len(parts) + (1 if leading else 0)
    if n < 1 or n > 3 or (leading and n == 2) or (not leading and n == 3) or not all(parts):
        raise ValueError('Package name is not valid')
    if len(parts) == 2:
        return {'namespace': parts[0], 'name': parts[1]}
    return {'namespace': '_', 'name': parts[0]}
