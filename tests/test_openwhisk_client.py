"""Tests for the httpx REST client and the state store registration."""

import base64
import json

import httpx
import pytest

from config import ConfigError, RuntimeConfig
from remote.client import RemoteClient, RemoteError, parse_package_name
from remote.openwhisk import LIST_PAGE_SIZE, OpenWhiskClient
from remote.state_store import StateStoreError, register_org_id


class Recorder:
    """httpx.MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses):
        self.requests = []
        self.responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={})

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def make_client(recorder: Recorder, **kwargs) -> OpenWhiskClient:
    return OpenWhiskClient(
        'localhost:3233', 'ns', 'user:pass', transport=httpx.MockTransport(recorder), **kwargs)


class TestParsePackageName:
    """Tests for parse_package_name()."""

    @pytest.mark.parametrize('name,expected', [
        ('pkg', {'namespace': '_', 'name': 'pkg'}),
        ('ns/pkg', {'namespace': 'ns', 'name': 'pkg'}),
        ('/ns/pkg', {'namespace': 'ns', 'name': 'pkg'}),
        ('/_/pkg', {'namespace': '_', 'name': 'pkg'}),
    ])
    def test_valid(self, name, expected):
        assert parse_package_name(name) == expected

    @pytest.mark.parametrize('name', ['a/b/c', '/a/b/c', ''])
    def test_invalid(self, name):
        with pytest.raises(ValueError, match='Package name is not valid'):
            parse_package_name(name)


class TestOpenWhiskClient:
    """Tests for request paths and payloads."""

    def test_is_remote_client(self):
        client = make_client(Recorder())
        assert isinstance(client, RemoteClient)
        assert client.apihost == 'https://localhost:3233'

    def test_from_config_requires_credentials(self):
        with pytest.raises(ConfigError):
            OpenWhiskClient.from_config(RuntimeConfig(namespace='ns'))

    def test_qualify(self):
        client = make_client(Recorder())
        assert client.qualify('pkg/a') == '/ns/pkg/a'
        assert client.qualify('/other/pkg/a') == '/other/pkg/a'

    @pytest.mark.asyncio
    async def test_action_update(self):
        recorder = Recorder()
        async with make_client(recorder) as client:
            await client.actions.update({
                'name': 'pkg/hello',
                'action': 'function main() {}',
                'exec': {'kind': 'nodejs:18'},
                'annotations': {'web-export': True},
                'params': {'name': 'world'},
                'limits': {'memory': 256},
            })

        request = recorder.last
        assert request.method == 'PUT'
        assert request.url.path == '/api/v1/namespaces/ns/actions/pkg/hello'
        assert request.url.params['overwrite'] == 'true'
        assert request.headers['authorization'] == 'Basic ' + base64.b64encode(b'user:pass').decode()
        assert recorder.body() == {
            'exec': {'kind': 'nodejs:18', 'code': 'function main() {}'},
            'annotations': [{'key': 'web-export', 'value': True}],
            'parameters': [{'key': 'name', 'value': 'world'}],
            'limits': {'memory': 256},
        }

    @pytest.mark.asyncio
    async def test_binary_action_code(self):
        recorder = Recorder()
        async with make_client(recorder) as client:
            await client.actions.update({'name': 'a', 'action': b'PK\x03\x04', 'exec': {'kind': 'nodejs:18'}})
        exec_ = recorder.body()['exec']
        assert exec_['binary'] is True
        assert exec_['code'] == base64.b64encode(b'PK\x03\x04').decode()

    @pytest.mark.asyncio
    async def test_sequence_has_no_code(self):
        recorder = Recorder()
        async with make_client(recorder) as client:
            await client.actions.update({
                'name': 'seq', 'action': '', 'exec': {'kind': 'sequence', 'components': ['/ns/a']}})
        assert recorder.body()['exec'] == {'kind': 'sequence', 'components': ['/ns/a']}

    @pytest.mark.asyncio
    async def test_rule_names_qualified(self):
        recorder = Recorder()
        async with make_client(recorder) as client:
            await client.rules.update({'name': 'r', 'trigger': 't', 'action': '/ns/pkg/a'})
        assert recorder.last.url.path == '/api/v1/namespaces/ns/rules/r'
        assert recorder.body() == {'trigger': '/ns/t', 'action': '/ns/pkg/a'}

    @pytest.mark.asyncio
    async def test_trigger_create_registers_feed(self):
        recorder = Recorder()
        async with make_client(recorder) as client:
            await client.triggers.create({'name': 't', 'trigger': {
                'feed': '/whisk.system/alarms/alarm',
                'parameters': [{'key': 'cron', 'value': '* * * * *'}],
            }})

        methods = [(r.method, r.url.path) for r in recorder.requests]
        assert methods == [
            ('PUT', '/api/v1/namespaces/ns/triggers/t'),
            ('POST', '/api/v1/namespaces/whisk.system/actions/alarms/alarm'),
            ('POST', '/api/v1/namespaces/whisk.system/actions/alarms/alarm'),
        ]
        assert recorder.body(0)['annotations'] == [{'key': 'feed', 'value': '/whisk.system/alarms/alarm'}]
        assert recorder.body(1)['lifecycleEvent'] == 'DELETE'
        feed = recorder.body(2)
        assert feed['lifecycleEvent'] == 'CREATE'
        assert feed['triggerName'] == '/ns/t'
        assert feed['authKey'] == 'user:pass'
        assert feed['cron'] == '* * * * *'
        assert recorder.requests[2].url.params['blocking'] == 'true'

    @pytest.mark.asyncio
    async def test_route_create_and_delete(self):
        recorder = Recorder()
        route = {'name': 'api', 'basepath': '/v1', 'relpath': '/hello', 'action': 'pkg/hello',
                 'operation': 'get', 'responsetype': 'http'}
        async with make_client(recorder) as client:
            await client.routes.create(route)
            await client.routes.delete({'basepath': '/v1', 'relpath': '/hello'})

        create, delete = recorder.requests
        assert create.url.path == '/api/v1/web/whisk.system/apimgmt/createApi.http'
        apidoc = recorder.body(0)['apidoc']
        assert apidoc['gatewayMethod'] == 'GET'
        assert apidoc['action']['backendUrl'] == 'https://localhost:3233/api/v1/web/ns/pkg/hello.http'
        assert delete.method == 'DELETE'
        assert delete.url.params['relpath'] == '/hello'
        assert delete.url.params['spaceguid'] == 'user'

    @pytest.mark.asyncio
    async def test_list_follows_pages(self):
        full = [{'name': f'a{i}'} for i in range(LIST_PAGE_SIZE)]
        recorder = Recorder(httpx.Response(200, json=full), httpx.Response(200, json=[{'name': 'last'}]))
        async with make_client(recorder) as client:
            result = await client.actions.list()
        assert len(result) == LIST_PAGE_SIZE + 1
        assert [r.url.params['skip'] for r in recorder.requests] == ['0', str(LIST_PAGE_SIZE)]

    @pytest.mark.asyncio
    async def test_list_with_limit_is_one_page(self):
        recorder = Recorder(httpx.Response(200, json=[{'name': 'a'}]))
        async with make_client(recorder) as client:
            assert await client.packages.list(limit=1) == [{'name': 'a'}]
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_not_found(self):
        recorder = Recorder(httpx.Response(404, json={'error': 'The requested resource does not exist.'}))
        async with make_client(recorder) as client:
            with pytest.raises(RemoteError) as exc_info:
                await client.actions.get({'name': 'missing'})
        assert exc_info.value.is_not_found
        assert 'does not exist' in exc_info.value.body

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def fail(request):
            raise httpx.ConnectError('connection refused', request=request)

        client = OpenWhiskClient('localhost:3233', 'ns', 'user:pass', transport=httpx.MockTransport(fail))
        async with client:
            with pytest.raises(RemoteError) as exc_info:
                await client.packages.list()
        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_empty_body(self):
        recorder = Recorder(httpx.Response(204))
        async with make_client(recorder) as client:
            assert await client.actions.delete({'name': 'a'}) == {}


class TestRegisterOrgId:
    """Tests for register_org_id()."""

    @pytest.mark.asyncio
    async def test_success(self):
        recorder = Recorder(httpx.Response(200, json={'ok': True}))
        result = await register_org_id('ns', 'user:pass', 'ORG', endpoint='https://state.test/put',
                                       transport=httpx.MockTransport(recorder))
        assert result == {'ok': True}
        assert recorder.last.headers['authorization'] == 'Basic ' + base64.b64encode(b'user:pass').decode()
        assert recorder.body() == {
            'namespace': 'ns',
            'key': '__aio',
            'value': {'project': {'org': {'ims_org_id': 'ORG'}}},
            'ttl': -1,
        }

    @pytest.mark.asyncio
    async def test_rejected(self):
        recorder = Recorder(httpx.Response(401, json={'error': 'unauthorized'}))
        with pytest.raises(StateStoreError, match='received status=401'):
            await register_org_id('ns', 'user:pass', 'ORG', endpoint='https://state.test/put',
                                  transport=httpx.MockTransport(recorder))

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        recorder = Recorder(httpx.Response(200, text='OK'))
        result = await register_org_id('ns', 'user:pass', 'ORG', endpoint='https://state.test/put',
                                       transport=httpx.MockTransport(recorder))
        assert result == {}
