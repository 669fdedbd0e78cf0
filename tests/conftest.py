"""Shared pytest fixtures for runtime-deployer tests."""

import copy
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from remote.client import RemoteError  # noqa: E402


def _kv(annotations):
    if annotations is None:
        return []
    if isinstance(annotations, dict):
        return [{'key': k, 'value': v} for k, v in annotations.items()]
    return list(annotations)


class FakeResource:
    """In-memory resource kind. Deleting or getting a missing entity raises a 404."""

    def __init__(self, kind: str, namespace: str):
        self.kind = kind
        self.namespace = namespace
        self.store: dict = {}
        self.calls: list = []

    def _key(self, ref: dict):
        return ref['name']

    def _stored(self, entity: dict) -> dict:
        name = entity['name']
        namespace = self.namespace
        if self.kind == 'actions' and '/' in name:
            pkg, name = name.split('/', 1)
            namespace = f'{self.namespace}/{pkg}'
        if self.kind == 'triggers':
            annotations = (entity.get('trigger') or {}).get('annotations')
        else:
            annotations = entity.get('annotations')
        return {'name': name, 'namespace': namespace, 'annotations': _kv(annotations)}

    async def create(self, entity: dict) -> dict:
        self.calls.append(('create', copy.deepcopy(entity)))
        self.store[self._key(entity)] = self._stored(entity)
        return self.store[self._key(entity)]

    async def update(self, entity: dict) -> dict:
        self.calls.append(('update', copy.deepcopy(entity)))
        self.store[self._key(entity)] = self._stored(entity)
        return self.store[self._key(entity)]

    async def delete(self, ref: dict) -> dict:
        self.calls.append(('delete', copy.deepcopy(ref)))
        if self._key(ref) not in self.store:
            raise RemoteError(f'{self.kind} {self._key(ref)} not found', status_code=404)
        return self.store.pop(self._key(ref))

    async def get(self, ref: dict) -> dict:
        self.calls.append(('get', copy.deepcopy(ref)))
        if self._key(ref) not in self.store:
            raise RemoteError(f'{self.kind} {self._key(ref)} not found', status_code=404)
        return copy.deepcopy(self.store[self._key(ref)])

    async def list(self, **options) -> list:
        self.calls.append(('list', options))
        return copy.deepcopy(list(self.store.values()))

    def ops(self, op: str) -> list:
        return [payload for name, payload in self.calls if name == op]


class FakeRoutes(FakeResource):
    def _key(self, ref: dict):
        return (ref['basepath'], ref['relpath'])

    def _stored(self, entity: dict) -> dict:
        return copy.deepcopy(entity)


class FakeRemote:
    """Remote capability object backed by dicts."""

    def __init__(self, namespace: str = 'ns'):
        self.namespace = namespace
        self.packages = FakeResource('packages', namespace)
        self.actions = FakeResource('actions', namespace)
        self.triggers = FakeResource('triggers', namespace)
        self.rules = FakeResource('rules', namespace)
        self.routes = FakeRoutes('routes', namespace)
        self.feeds = FakeResource('feeds', namespace)

    @property
    def resources(self) -> list:
        return [self.packages, self.actions, self.triggers, self.rules, self.routes]

    @property
    def delete_calls(self) -> list:
        return [payload for r in self.resources for payload in r.ops('delete')]

    def managed(self, kind: str, name: str, project_name: str, project_hash: str, namespace=None) -> None:
        """Seed a remote entity stamped with a managed annotation."""
        getattr(self, kind).store[name] = {
            'name': name.split('/')[-1],
            'namespace': namespace or self.namespace,
            'annotations': [{
                'key': 'whisk-managed',
                'value': {
                    'file': 'manifest.yaml',
                    'projectDeps': [],
                    'projectHash': project_hash,
                    'projectName': project_name,
                },
            }],
        }


@pytest.fixture
def remote():
    """Fake remote platform with namespace 'ns'."""
    return FakeRemote()


@pytest.fixture
def progress():
    """Progress logger collecting lines."""
    lines = []

    def log(message):
        lines.append(message)

    log.lines = lines
    return log


@pytest.fixture
def project_dir(tmp_path):
    """Project directory with a manifest, a deployment file and action sources.

    Creates:
    - manifest.yaml (package demo: hello, secret, seq, trigger, rule, api)
    - deployment.yaml (overrides for hello and the trigger)
    - actions/hello.js, actions/secret.js
    """
    (tmp_path / 'actions').mkdir()
    (tmp_path / 'actions' / 'hello.js').write_text("function main() { return {}; }\n")
    (tmp_path / 'actions' / 'secret.js').write_text("function main() { return {secret: true}; }\n")

    (tmp_path / 'manifest.yaml').write_text("""
project:
  name: demo-project
packages:
  demo:
    inputs:
      region: eu
    actions:
      hello:
        function: actions/hello.js
        runtime: nodejs:18
        web: 'yes'
        inputs:
          name: string
          greeting: hi
      secret:
        function: actions/secret.js
        runtime: nodejs:18
    sequences:
      seq:
        actions: hello, secret
        web: 'yes'
    triggers:
      everyMinute:
        feed: /whisk.system/alarms/alarm
        inputs:
          cron: '* * * * *'
    rules:
      everyMinuteRule:
        trigger: everyMinute
        action: secret
    apis:
      demo-api:
        v1:
          hello:
            hello:
              method: get
              response: http
""")

    (tmp_path / 'deployment.yaml').write_text("""
project:
  name: demo-project
  packages:
    demo:
      actions:
        hello:
          inputs:
            name: world
      triggers:
        everyMinute:
          inputs:
            cron: '*/5 * * * *'
""")
    return tmp_path
