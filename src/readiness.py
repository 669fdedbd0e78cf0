"""Pre-flight readiness checks before deploying.

Validates platform prerequisites before any entity is sent:
- API host reachability
- Runtime kinds the server advertises
"""

import logging

import requests
import urllib3

logger = logging.getLogger(__name__)


class ReadinessError(Exception):
    """The platform did not answer the pre-flight request as expected."""


def _api_info_url(apihost: str) -> str:
    apihost = apihost.rstrip('/')
    if not apihost.startswith(('http://', 'https://')):
        apihost = f'https://{apihost}'
    return apihost


def validate_api_host(apihost: str, verify: bool = True, timeout: float = 10) -> tuple[bool, str]:
    """Check that the API host answers its info endpoint.

    Args:
        apihost: Platform API host (e.g., https://adobeioruntime.net)
        verify: Verify TLS certificates
        timeout: Request timeout in seconds

    Returns:
        (success, message) tuple
    """
    url = _api_info_url(apihost)
    if not verify:
        # self-signed certs on local platform stacks
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    try:
        resp = requests.get(url, verify=verify, timeout=timeout)

        if resp.status_code == 200:
            build = resp.json().get('build', 'unknown')
            return True, f"API host {url} accessible (build {build})"

        return False, f"Unexpected API response: {resp.status_code} - {resp.text[:100]}"

    except requests.exceptions.ConnectionError as e:
        return False, f"Cannot connect to {url}: {e}"
    except requests.exceptions.Timeout:
        return False, f"Timeout connecting to {url}"
    except ValueError as e:
        return False, f"Invalid response from {url}: {e}"


def fetch_supported_runtimes(apihost: str, verify: bool = True, timeout: float = 10) -> list[str]:
    """Get the nodejs runtime kinds the server supports.

    Returns:
        Runtime kinds, e.g. ['nodejs:18', 'nodejs:20']

    Raises:
        ReadinessError: On a non-200 response or an unexpected body
    """
    url = _api_info_url(apihost)
    logger.debug(f"Getting supported runtimes from {url}")
    resp = requests.get(url, verify=verify, timeout=timeout)
    if resp.status_code != 200:
        raise ReadinessError(f"HTTP {resp.status_code} - An error occurred when retrieving supported runtimes.")

    try:
        runtimes = resp.json()['runtimes']['nodejs']
    except (ValueError, KeyError, TypeError) as e:
        raise ReadinessError(f"Unexpected runtimes response from {url}") from e
    return [item['kind'] for item in runtimes if 'kind' in item]
