"""Async REST client for the platform API, over httpx.

Implements the RemoteClient capability object: one resource client per
kind (packages, actions, triggers, rules, routes, feeds), all sharing one
httpx.AsyncClient. Entity dicts use the compiler.entities to_dict() shapes
and are converted to the REST payloads here.

Usage:
    async with OpenWhiskClient.from_config(config) as client:
        await client.actions.update(entity.to_dict())
"""

import base64
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from config import RuntimeConfig
from params import create_key_value_array_from_object
from remote.client import RemoteError
from remote.triggers import TriggerClient

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
# Largest page the platform returns for a list call
LIST_PAGE_SIZE = 200

APIMGMT_PATH = '/api/v1/web/whisk.system/apimgmt'


def _kv(value: Any) -> list[dict]:
    """Annotations and parameters travel as [{key, value}] lists."""
    if value is None:
        return []
    if isinstance(value, dict):
        return create_key_value_array_from_object(value)
    return list(value)


def _normalize_host(apihost: str) -> str:
    apihost = apihost.rstrip('/')
    if not apihost.startswith(('http://', 'https://')):
        apihost = f'https://{apihost}'
    return apihost


class _Resource:
    """Generic resource client for one entity kind."""

    def __init__(self, client: 'OpenWhiskClient', kind: str):
        self.client = client
        self.kind = kind

    def _path(self, name: str) -> str:
        return f'/namespaces/{quote(self.client.namespace)}/{self.kind}/{quote(name, safe="/")}'

    def _body(self, entity: dict) -> dict:
        return {k: v for k, v in entity.items() if k != 'name'}

    async def create(self, entity: dict) -> dict:
        return await self.client.request('PUT', self._path(entity['name']), json=self._body(entity))

    async def update(self, entity: dict) -> dict:
        return await self.client.request(
            'PUT', self._path(entity['name']), json=self._body(entity), params={'overwrite': 'true'})

    async def delete(self, ref: dict) -> dict:
        return await self.client.request('DELETE', self._path(ref['name']))

    async def get(self, ref: dict) -> dict:
        return await self.client.request('GET', self._path(ref['name']))

    async def list(self, **options) -> list[dict]:
        """List entities, following pages unless `limit` is given."""
        path = f'/namespaces/{quote(self.client.namespace)}/{self.kind}'
        if 'limit' in options:
            return await self.client.request('GET', path, params=options)

        results: list[dict] = []
        skip = 0
        while True:
            page = await self.client.request(
                'GET', path, params={**options, 'limit': LIST_PAGE_SIZE, 'skip': skip})
            results.extend(page)
            if len(page) < LIST_PAGE_SIZE:
                return results
            skip += LIST_PAGE_SIZE


class _Actions(_Resource):
    def _body(self, entity: dict) -> dict:
        exec_ = dict(entity.get('exec') or {})
        code = entity.get('action')
        if exec_.get('kind') != 'sequence' and code is not None:
            if isinstance(code, bytes):
                exec_['code'] = base64.b64encode(code).decode('ascii')
                exec_['binary'] = True
            else:
                exec_['code'] = code
        exec_.setdefault('kind', 'nodejs:default')

        body: dict[str, Any] = {
            'exec': exec_,
            'annotations': _kv(entity.get('annotations')),
            'parameters': _kv(entity.get('params')),
        }
        if entity.get('limits'):
            body['limits'] = entity['limits']
        return body


class _Packages(_Resource):
    def _body(self, entity: dict) -> dict:
        package = entity.get('package') or {}
        body: dict[str, Any] = {
            'annotations': _kv(entity.get('annotations')),
            'parameters': _kv(package.get('parameters')),
        }
        if 'publish' in package:
            body['publish'] = package['publish']
        if package.get('binding'):
            body['binding'] = package['binding']
        return body


class _Triggers(_Resource):
    def _body(self, entity: dict) -> dict:
        trigger = entity.get('trigger') or {}
        return {
            'annotations': _kv(trigger.get('annotations')),
            'parameters': _kv(trigger.get('parameters')),
        }


class _Rules(_Resource):
    def _body(self, entity: dict) -> dict:
        return {
            'trigger': self.client.qualify(entity['trigger']),
            'action': self.client.qualify(entity['action']),
        }


class _Feeds:
    """Feed registration: invokes the feed action with a lifecycle event."""

    def __init__(self, client: 'OpenWhiskClient'):
        self.client = client

    async def _invoke(self, event: str, ref: dict) -> dict:
        feed = self.client.qualify(ref['name'])
        body = dict(ref.get('params') or {})
        body.update({
            'lifecycleEvent': event,
            'triggerName': self.client.qualify(ref['trigger']),
            'authKey': self.client.auth,
        })
        ns, _, action = feed[1:].partition('/')
        path = f'/namespaces/{quote(ns)}/actions/{quote(action, safe="/")}'
        return await self.client.request('POST', path, json=body, params={'blocking': 'true'})

    async def create(self, ref: dict) -> dict:
        return await self._invoke('CREATE', ref)

    async def delete(self, ref: dict) -> dict:
        return await self._invoke('DELETE', ref)


class _Routes:
    """API gateway routes, managed through the apimgmt web actions."""

    def __init__(self, client: 'OpenWhiskClient'):
        self.client = client

    async def create(self, route: dict) -> dict:
        ns = self.client.namespace
        action = route['action']
        backend = f'{self.client.apihost}/api/v1/web/{ns}/{action}.{route.get("responsetype") or "json"}'
        apidoc = {
            'namespace': ns,
            'gatewayBasePath': route['basepath'],
            'gatewayPath': route['relpath'],
            'gatewayMethod': (route.get('operation') or 'GET').upper(),
            'id': f'API:{ns}:{route["basepath"]}',
            'apiName': route['name'],
            'action': {
                'name': action,
                'namespace': ns,
                'backendMethod': (route.get('operation') or 'GET').upper(),
                'backendUrl': backend,
                'authkey': self.client.auth,
            },
        }
        return await self.client.request(
            'POST', f'{APIMGMT_PATH}/createApi.http', json={'apidoc': apidoc}, absolute=True,
            params={'responsetype': route.get('responsetype') or 'json'})

    async def delete(self, ref: dict) -> dict:
        params = {
            'basepath': ref['basepath'],
            'relpath': ref['relpath'],
            'spaceguid': self.client.auth.split(':')[0],
        }
        if ref.get('operation'):
            params['operation'] = ref['operation']
        return await self.client.request('DELETE', f'{APIMGMT_PATH}/deleteApi.http', params=params, absolute=True)

    async def update(self, route: dict) -> dict:
        return await self.create(route)

    async def get(self, ref: dict) -> dict:
        params = {'basepath': ref['basepath'], 'spaceguid': self.client.auth.split(':')[0]}
        return await self.client.request('GET', f'{APIMGMT_PATH}/getApi.http', params=params, absolute=True)

    async def list(self, **options) -> list[dict]:
        params = {'spaceguid': self.client.auth.split(':')[0], **options}
        result = await self.client.request('GET', f'{APIMGMT_PATH}/getApi.http', params=params, absolute=True)
        return result.get('apis', []) if isinstance(result, dict) else result


class OpenWhiskClient:
    """RemoteClient over the platform REST API.

    Args:
        apihost: API host, scheme optional (https assumed)
        namespace: Target namespace
        auth: API key, "uuid:key"
        apiversion: REST API version segment
        ignore_certs: Disable TLS verification
        transport: httpx transport override (tests use httpx.MockTransport)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        apihost: str,
        namespace: str,
        auth: str,
        apiversion: str = 'v1',
        ignore_certs: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.apihost = _normalize_host(apihost)
        self.namespace = namespace
        self.auth = auth
        self.apiversion = apiversion
        user, _, password = auth.partition(':')
        self._http = httpx.AsyncClient(
            auth=(user, password),
            verify=not ignore_certs,
            timeout=timeout,
            transport=transport,
        )

        self.packages = _Packages(self, 'packages')
        self.actions = _Actions(self, 'actions')
        self.rules = _Rules(self, 'rules')
        self.routes = _Routes(self)
        self.feeds = _Feeds(self)
        self.triggers = TriggerClient(_Triggers(self, 'triggers'), self.feeds)

    @classmethod
    def from_config(cls, config: RuntimeConfig, **kwargs) -> 'OpenWhiskClient':
        """Create a client from runtime configuration (credentials must be set)."""
        config.check_credentials()
        return cls(
            apihost=config.apihost,
            namespace=config.namespace,
            auth=config.auth,
            apiversion=config.apiversion,
            ignore_certs=config.ignore_certs,
            **kwargs,
        )

    def qualify(self, name: str) -> str:
        """Fully qualify an entity name as /namespace/name."""
        if name.startswith('/'):
            return name
        return f'/{self.namespace}/{name}'

    async def request(self, method: str, path: str, absolute: bool = False, **kwargs) -> Any:
        """Send a request and decode the JSON response.

        Args:
            method: HTTP method
            path: Path under /api/<version>, or under the host if absolute
            absolute: Path is relative to the API host itself
            **kwargs: Passed through to httpx (json, params)

        Raises:
            RemoteError: On transport errors and non-2xx responses
        """
        base = self.apihost if absolute else f'{self.apihost}/api/{self.apiversion}'
        url = f'{base}{path}'
        logger.debug(f"{method} {url}")
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.content:
            return {}
        return response.json()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> 'OpenWhiskClient':
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
