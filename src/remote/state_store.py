"""Org id registration in the platform's side key-value store.

The headless auth validator reads the organization id of the namespace
from this store, so it has to be written before the first action that is
guarded by the validator is deployed.
"""

import base64
import logging
from typing import Optional

import httpx

from config import STATE_KEY, STATE_PUT_ENDPOINT

logger = logging.getLogger(__name__)


class StateStoreError(Exception):
    """The state store rejected or failed the write."""


async def register_org_id(
    namespace: str,
    auth: str,
    ims_org_id: str,
    endpoint: str = STATE_PUT_ENDPOINT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Store the org id for a namespace, without expiry.

    Args:
        namespace: Namespace the validator runs in
        auth: Namespace API key, sent as basic auth
        ims_org_id: Organization id
        endpoint: State store put endpoint
        transport: httpx transport override

    Returns:
        Decoded response body

    Raises:
        StateStoreError: On a non-2xx response or a transport failure
    """
    token = base64.b64encode(auth.encode('utf-8')).decode('ascii')
    body = {
        'namespace': namespace,
        'key': STATE_KEY,
        'value': {'project': {'org': {'ims_org_id': ims_org_id}}},
        'ttl': -1,
    }
    async with httpx.AsyncClient(transport=transport) as http:
        try:
            response = await http.post(
                endpoint,
                json=body,
                headers={'Authorization': f'Basic {token}'},
            )
        except httpx.HTTPError as e:
            raise StateStoreError(f"failed setting ims_org_id={ims_org_id} into state lib: {e}") from e

    if not response.is_success:
        raise StateStoreError(
            f"failed setting ims_org_id={ims_org_id} into state lib, received status={response.status_code}, "
            f"please make sure your runtime credentials are correct"
        )
    try:
        result = response.json() if response.content else {}
    except ValueError:
        logger.debug(f"state lib returned a non-JSON body: {response.text[:100]}")
        result = {}
    logger.debug(f"set IMS org id into cloud state, response: {result}")
    return result
