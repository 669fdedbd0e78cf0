"""Remote platform access: capability interfaces and the REST client."""

from remote.client import RemoteClient, RemoteError, ResourceClient, parse_package_name
from remote.triggers import TriggerClient
from remote.openwhisk import OpenWhiskClient
from remote.state_store import StateStoreError, register_org_id

__all__ = [
    "RemoteClient",
    "RemoteError",
    "ResourceClient",
    "parse_package_name",
    "TriggerClient",
    "OpenWhiskClient",
    "StateStoreError",
    "register_org_id",
]
