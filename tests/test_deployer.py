"""Tests for EntityDeployer and EntityUndeployer."""

from unittest.mock import AsyncMock

import pytest

from compiler.entities import (
    ActionEntity,
    Entities,
    PackageEntity,
    RouteEntity,
    RuleEntity,
    TriggerEntity,
)
from project_sync.deployer import EntityDeployer, EntityUndeployer, qualify_component
from project_sync.errors import SideEffectError, UnsupportedRuntimeError
from remote.client import RemoteError
from remote.state_store import StateStoreError

VALIDATOR = '/adobeio/shared-validators-v1/headless-v2'


def sample_entities() -> Entities:
    return Entities(
        pkg_and_deps=[PackageEntity(name='pkg')],
        actions=[
            ActionEntity(name='pkg/a', code='code', exec={'kind': 'nodejs:18'}, annotations={'web-export': True}),
            ActionEntity(name='pkg/s', exec={'kind': 'sequence', 'components': ['pkg/a', 'other/ns/b']},
                         annotations={}),
        ],
        triggers=[TriggerEntity(name='t')],
        rules=[RuleEntity(name='r', trigger='t', action='pkg/a')],
        apis=[RouteEntity(name='api', basepath='/v1', relpath='/a', action='pkg/a', operation='get',
                          response_type='json')],
    )


class TestQualifyComponent:
    """Tests for sequence component qualification."""

    @pytest.mark.parametrize('component,expected', [
        ('spackage/saction', '/ns/spackage/saction'),
        ('/spackage/saction', '/ns/spackage/saction'),
        ('snamespace/spackage/saction', '/snamespace/spackage/saction'),
        ('/snamespace/spackage/saction', '/snamespace/spackage/saction'),
    ])
    def test_qualify(self, component, expected):
        assert qualify_component(component, 'ns') == expected


class TestEntityDeployer:
    """Tests for deploy order and entity shapes."""

    @pytest.mark.asyncio
    async def test_deploy(self, remote, progress):
        entities = sample_entities()
        await EntityDeployer(remote, log=progress).deploy(entities)

        assert remote.packages.ops('update') == [{'name': 'pkg'}]
        actions = remote.actions.ops('update')
        assert [a['name'] for a in actions] == ['pkg/a', 'pkg/s']
        assert actions[0]['action'] == 'code'
        assert actions[1]['exec']['components'] == ['/ns/pkg/a', '/other/ns/b']
        assert remote.routes.ops('create')[0]['relpath'] == '/a'
        assert remote.triggers.ops('update') == [{'name': 't', 'trigger': {}}]
        assert remote.rules.ops('update') == [{'name': 'r', 'trigger': 't', 'action': '/ns/pkg/a'}]
        assert progress.lines[-1] == 'Success: Deployment completed successfully.'

    @pytest.mark.asyncio
    async def test_entities_not_modified(self, remote, progress):
        entities = sample_entities()
        await EntityDeployer(remote, log=progress).deploy(entities)
        assert entities.actions[1].exec['components'] == ['pkg/a', 'other/ns/b']
        assert entities.rules[0].action == 'pkg/a'

    @pytest.mark.asyncio
    async def test_progress_lines(self, remote, progress):
        await EntityDeployer(remote, log=progress).deploy(sample_entities())
        assert progress.lines[:2] == [
            'Info: Deploying package [pkg]...',
            'Info: package [pkg] has been successfully deployed.\n',
        ]
        assert 'Info: Deploying API route [get /v1/a [pkg/a]] for API [api]...' in progress.lines

    @pytest.mark.asyncio
    async def test_default_package(self, remote, progress):
        entities = Entities(
            pkg_and_deps=[PackageEntity(name='default')],
            actions=[ActionEntity(name='default/a', exec={'kind': 'nodejs:18'})],
        )
        await EntityDeployer(remote, log=progress).deploy(entities)
        assert remote.packages.ops('update') == []
        assert remote.actions.ops('update')[0]['name'] == 'a'
        assert progress.lines[0] == 'Info: Skipped creating package [default] because it is a reserved package.'

    @pytest.mark.asyncio
    async def test_failure_stops_later_steps(self, remote, progress):
        remote.actions.update = AsyncMock(side_effect=RemoteError('boom', status_code=500))
        with pytest.raises(RemoteError):
            await EntityDeployer(remote, log=progress).deploy(sample_entities())
        assert len(remote.packages.ops('update')) == 1
        assert remote.triggers.ops('update') == []


class TestRuntimeCheck:
    """Tests for the runtime kind check."""

    def entities(self, kind):
        return Entities(actions=[ActionEntity(name='pkg/a', exec={'kind': kind})])

    @pytest.mark.asyncio
    async def test_unknown_kind_without_server_list(self, remote, progress):
        await EntityDeployer(remote, log=progress).deploy(self.entities('python:3'))
        assert len(remote.actions.ops('update')) == 1

    @pytest.mark.asyncio
    async def test_kind_advertised_by_server(self, remote, progress):
        deployer = EntityDeployer(remote, log=progress, server_runtimes=['nodejs:20', 'nodejs:22'])
        await deployer.deploy(self.entities('nodejs:22'))
        assert len(remote.actions.ops('update')) == 1

    @pytest.mark.asyncio
    async def test_unsupported_kind(self, remote, progress):
        deployer = EntityDeployer(remote, log=progress, server_runtimes=['nodejs:20'],
                                  apihost='https://localhost:3233')
        with pytest.raises(UnsupportedRuntimeError, match="Unsupported node version 'nodejs:8'"):
            await deployer.deploy(self.entities('nodejs:8'))
        assert remote.actions.ops('update') == []

    @pytest.mark.asyncio
    async def test_blackbox_always_accepted(self, remote, progress):
        deployer = EntityDeployer(remote, log=progress, server_runtimes=['nodejs:20'])
        await deployer.deploy(self.entities('blackbox'))
        assert len(remote.actions.ops('update')) == 1


class TestOrgIdSetup:
    """Tests for org id registration before deploying."""

    def entities(self):
        return Entities(actions=[
            ActionEntity(name='pkg/__secured_a', exec={'kind': 'nodejs:18'}),
            ActionEntity(name='pkg/a', exec={'kind': 'sequence', 'components': [VALIDATOR, 'pkg/__secured_a']}),
        ])

    @pytest.mark.asyncio
    async def test_registers_org_id(self, remote, progress):
        register = AsyncMock(return_value={})
        deployer = EntityDeployer(remote, log=progress, validator=VALIDATOR, ims_org_id='ORG',
                                  auth='user:pass', register_org=register)
        await deployer.deploy(self.entities())
        register.assert_awaited_once_with('ns', 'user:pass', 'ORG')
        assert len(remote.actions.ops('update')) == 2

    @pytest.mark.asyncio
    async def test_no_validator_sequence_no_registration(self, remote, progress):
        register = AsyncMock()
        deployer = EntityDeployer(remote, log=progress, validator=VALIDATOR, register_org=register)
        await deployer.deploy(sample_entities())
        register.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_org_id(self, remote, progress):
        deployer = EntityDeployer(remote, log=progress, validator=VALIDATOR, register_org=AsyncMock())
        with pytest.raises(SideEffectError, match='imsOrgId must be defined'):
            await deployer.deploy(self.entities())
        assert remote.actions.ops('update') == []

    @pytest.mark.asyncio
    async def test_registration_failure_aborts(self, remote, progress):
        register = AsyncMock(side_effect=StateStoreError('received status=401'))
        deployer = EntityDeployer(remote, log=progress, validator=VALIDATOR, ims_org_id='ORG',
                                  register_org=register)
        with pytest.raises(SideEffectError, match='status=401') as exc_info:
            await deployer.deploy(self.entities())
        assert isinstance(exc_info.value.__cause__, StateStoreError)
        assert remote.packages.ops('update') == []
        assert remote.actions.ops('update') == []


class TestEntityUndeployer:
    """Tests for undeploy order and idempotency."""

    @pytest.mark.asyncio
    async def test_undeploy_order(self, remote, progress):
        entities = sample_entities()
        await EntityDeployer(remote, log=progress).deploy(entities)
        remote.actions.calls.clear()

        order = []
        for resource in remote.resources:
            original = resource.delete

            async def delete(ref, _original=original, _kind=resource.kind):
                order.append(_kind)
                return await _original(ref)

            resource.delete = delete

        await EntityUndeployer(remote, log=progress).undeploy(entities)
        assert order == ['actions', 'actions', 'triggers', 'rules', 'routes', 'packages']
        assert remote.routes.ops('delete') == [{'basepath': '/v1', 'relpath': '/a'}]
        assert progress.lines[-1] == 'Success: Undeployment completed successfully.'

    @pytest.mark.asyncio
    async def test_repeated_route_delete_is_ignored(self, remote, progress):
        entities = Entities(apis=sample_entities().apis)
        await EntityDeployer(remote, log=progress).deploy(entities)

        undeployer = EntityUndeployer(remote, log=progress)
        await undeployer.undeploy(entities)
        await undeployer.undeploy(entities)
        assert len(remote.routes.ops('delete')) == 2

    @pytest.mark.asyncio
    async def test_repeated_action_delete_raises(self, remote, progress):
        entities = Entities(actions=[ActionEntity(name='pkg/a', exec={'kind': 'nodejs:18'})])
        await EntityDeployer(remote, log=progress).deploy(entities)

        undeployer = EntityUndeployer(remote, log=progress)
        await undeployer.undeploy(entities)
        with pytest.raises(RemoteError) as exc_info:
            await undeployer.undeploy(entities)
        assert exc_info.value.is_not_found

    @pytest.mark.asyncio
    async def test_route_server_error_propagates(self, remote, progress):
        remote.routes.delete = AsyncMock(side_effect=RemoteError('boom', status_code=500))
        with pytest.raises(RemoteError):
            await EntityUndeployer(remote, log=progress).undeploy(Entities(apis=sample_entities().apis))
