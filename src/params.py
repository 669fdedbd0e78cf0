"""Parameter resolution for manifest inputs.

Merges manifest inputs with deployment-file inputs and call-site params,
then resolves typed shorthands, {value|default} objects and $ENV references
into plain values.

Precedence, lowest first: manifest inputs -> deployment inputs -> call params.
Call params only replace keys the inputs already declare.
"""

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Typed-parameter shorthand: `name: string` resolves to the type default
TYPE_DEFAULTS = {
    'string': '',
    'integer': 0,
    'number': 0,
}

DEFAULT_KEYS = ('value', 'default')

# $VAR, ${VAR}, ${ VAR }
ENV_KEY_PATTERN = re.compile(r'(\$\{ *|\$)([a-zA-Z0-9_-]+)( *\}|)')


def replace_env_keys(value: Any) -> Any:
    """Substitute $VAR and ${VAR} references with environment values.

    Undefined variables become ''. Non-string values pass through.
    """
    if not isinstance(value, str):
        return value
    return ENV_KEY_PATTERN.sub(lambda m: os.environ.get(m.group(2), ''), value)


def _resolve_value(value: Any) -> Any:
    if isinstance(value, str):
        if value in TYPE_DEFAULTS:
            return TYPE_DEFAULTS[value]
        return replace_env_keys(value)
    if isinstance(value, dict):
        for key in DEFAULT_KEYS:
            if key in value:
                return replace_env_keys(value[key])
        return {k: _resolve_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_value(v) for v in value]
    return value


def process_inputs(inputs: Optional[dict], params: Optional[dict] = None) -> dict:
    """Resolve an inputs map.

    Args:
        inputs: Merged inputs (manifest + deployment)
        params: Call-site params; replace matching input keys verbatim

    Returns:
        New flat dict, keys in input order
    """
    if not isinstance(inputs, dict):
        logger.debug("process_inputs: ignoring non-mapping inputs %r", inputs)
        return {}
    params = params or {}
    resolved = {}
    for key, value in inputs.items():
        if key in params:
            value = copy.deepcopy(params[key])
        resolved[key] = _resolve_value(value)
    return resolved


def merge_inputs(
    manifest_inputs: Optional[dict],
    deployment_inputs: Optional[dict] = None,
    call_params: Optional[dict] = None,
) -> dict:
    """Merge and resolve inputs with deployment and call-site precedence.

    Neither input mapping is modified.
    """
    union = dict(manifest_inputs or {})
    union.update(deployment_inputs or {})
    return process_inputs(union, call_params)


def create_key_value_array_from_object(obj: dict) -> list[dict]:
    """Convert {k: v} to [{'key': k, 'value': v}] preserving order."""
    return [{'key': key, 'value': value} for key, value in obj.items()]


def safe_parse(value: Any) -> Any:
    """JSON-decode strings that look like booleans, objects or arrays.

    Anything that fails to decode is returned unchanged.
    """
    if isinstance(value, str) and (value in ('true', 'false') or value[:1] in ('{', '[')):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.debug(f"JSON parse failed for value {value}")
    return value


def create_key_value_object_from_array(items: Optional[list]) -> dict:
    """Convert [{'key': k, 'value': v}] to {k: safe_parse(v)}.

    Raises:
        ValueError: If an item has no usable key
    """
    result = {}
    for item in items or []:
        if not isinstance(item, dict) or item.get('key') in (None, ''):
            raise ValueError('Please provide correct input array with key and value params in each array item')
        result[item['key']] = safe_parse(item.get('value'))
    return result


def create_key_value_object_from_flag(flag: list[str]) -> dict:
    """Convert a flat [key1, value1, key2, value2] flag list to a dict.

    Raises:
        ValueError: If the list has an odd number of items
    """
    if len(flag) % 2 != 0:
        raise ValueError('Please provide correct values for flags')
    return {flag[i]: safe_parse(flag[i + 1]) for i in range(0, len(flag), 2)}


def create_key_value_object_from_file(path: Path) -> dict:
    """Load a JSON object of parameters from a file."""
    with open(path, encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Parameter file {path} must contain a JSON object")
    return data


def get_key_value_object_from_merged_parameters(
    params: Optional[list[str]] = None,
    param_file: Optional[Path] = None,
) -> dict:
    """Merge a parameter file with flag params; flag params win."""
    result: dict = {}
    if param_file:
        result.update(create_key_value_object_from_file(param_file))
    if params:
        result.update(create_key_value_object_from_flag(params))
    return result
