"""Runtime configuration management.

Configuration is layered, lowest precedence first:
- A YAML config file (discovered, see get_config_file())
- RUNTIME_* environment variables
- Explicit overrides passed by the caller (CLI flags)

The config file is optional. Credentials (apihost, namespace, auth) must be
present by the time a command talks to the platform; see check_credentials().
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


class ConfigError(Exception):
    """Configuration error."""


# First-party platform host; compiling for it enables the auth rewrite
FIRST_PARTY_APIHOST = 'https://adobeioruntime.net'

PROD_ENV = 'prod'
STAGE_ENV = 'stage'
DEFAULT_ENV = PROD_ENV

# Validator action prepended to auth-gated web actions, per deploy environment
DEFAULT_VALIDATORS = {
    PROD_ENV: '/adobeio/shared-validators-v1/headless-v2',
    STAGE_ENV: '/adobeio-stage/shared-validators-v1/headless-v2',
}

# Side key-value store that the headless validator reads the org id from
STATE_PUT_ENDPOINT = 'https://adobeio.adobeioruntime.net/api/v1/web/state/put'
STATE_KEY = '__aio'

# Reserved package name: never created, actions deploy without prefix
DEFAULT_PACKAGE_RESERVED_NAME = 'default'

# Runtime kinds known to be supported without asking the server
SUPPORTED_RUNTIMES = ['sequence', 'nodejs:10', 'nodejs:12', 'nodejs:14', 'nodejs:16', 'nodejs:18']

# Environment variable -> RuntimeConfig attribute
ENV_VARS = {
    'RUNTIME_APIHOST': 'apihost',
    'RUNTIME_NAMESPACE': 'namespace',
    'RUNTIME_AUTH': 'auth',
    'RUNTIME_APIVERSION': 'apiversion',
    'RUNTIME_ENV': 'env',
    'RUNTIME_IMS_ORG_ID': 'ims_org_id',
}


@dataclass
class RuntimeConfig:
    """Connection and deployment settings for the target platform.

    Attributes:
        apihost: Platform API host URL (e.g., https://adobeioruntime.net)
        namespace: Namespace that entities are deployed into
        auth: API key ("uuid:key")
        apiversion: REST API version segment
        env: Deploy environment, selects the auth validator
        ims_org_id: Organization id registered for the headless validator
        validators: env -> validator action path
        ignore_certs: Skip TLS verification (local platform stacks)
        config_file: File the settings were read from, if any
    """
    apihost: str = FIRST_PARTY_APIHOST
    namespace: str = ''
    auth: str = ''
    apiversion: str = 'v1'
    env: str = DEFAULT_ENV
    ims_org_id: Optional[str] = None
    validators: dict = field(default_factory=lambda: dict(DEFAULT_VALIDATORS))
    ignore_certs: bool = False
    config_file: Optional[Path] = None

    @property
    def is_first_party(self) -> bool:
        """True if deploying to the first-party platform host."""
        return self.apihost.rstrip('/') == FIRST_PARTY_APIHOST

    @property
    def validator(self) -> Optional[str]:
        """Validator action for the current deploy environment."""
        return self.validators.get(self.env)

    def check_credentials(self) -> None:
        """Raise ConfigError if namespace or auth is missing; apihost always has a default."""
        if not self.namespace:
            raise ConfigError(
                "missing runtime namespace, did you set the RUNTIME_NAMESPACE environment variable?"
            )
        if not self.auth:
            raise ConfigError(
                "missing runtime auth, did you set the RUNTIME_AUTH environment variable?"
            )

    def _apply(self, data: dict) -> None:
        """Apply non-empty values from a flat settings dict."""
        for key in ('apihost', 'namespace', 'auth', 'apiversion', 'env', 'ims_org_id'):
            if value := data.get(key):
                setattr(self, key, str(value))
        if validators := data.get('validators'):
            if not isinstance(validators, dict):
                raise ConfigError("'validators' must map environment names to action paths")
            self.validators.update(validators)
        if 'ignore_certs' in data:
            self.ignore_certs = bool(data['ignore_certs'])


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must be a YAML object (dict)")
    return data


def get_config_file() -> Optional[Path]:
    """Discover the config file.

    Resolution order:
    1. $RUNTIME_CONFIG environment variable (must exist)
    2. ./.runtime.yaml
    3. ~/.config/runtime-deployer/config.yaml

    Returns:
        Path to the config file, or None if there is none
    """
    if env_path := os.environ.get('RUNTIME_CONFIG'):
        path = Path(env_path)
        if path.is_file():
            return path
        raise ConfigError(f"RUNTIME_CONFIG={env_path} does not exist")

    local = Path.cwd() / '.runtime.yaml'
    if local.is_file():
        return local

    user = Path.home() / '.config' / 'runtime-deployer' / 'config.yaml'
    if user.is_file():
        return user

    return None


def load_runtime_config(config_file: Optional[Path] = None, **overrides) -> RuntimeConfig:
    """Load runtime configuration.

    Merge order: config file -> environment -> overrides. The file's
    settings may sit at top level or under a 'runtime' key.

    Args:
        config_file: Explicit config file; discovered if None
        **overrides: RuntimeConfig attributes, None values are ignored

    Returns:
        RuntimeConfig instance

    Raises:
        ConfigError: If a config file is given but unreadable or invalid
    """
    config = RuntimeConfig()

    path = config_file or get_config_file()
    if path is not None:
        if not Path(path).is_file():
            raise ConfigError(f"Config file not found: {path}")
        data = _parse_yaml(Path(path))
        config._apply(data.get('runtime', data))
        config.config_file = Path(path)

    config._apply({attr: os.environ.get(var) for var, attr in ENV_VARS.items()})
    config._apply({k: v for k, v in overrides.items() if v is not None})
    return config
