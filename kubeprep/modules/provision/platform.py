"""OS family and architecture detection."""

import logging
import shlex
from typing import Dict, Iterable

from .host import HostState
from .models import Architecture, OSFamily, PlatformProfile

logger = logging.getLogger("kubeprep.provision.platform")

OS_RELEASE = '/etc/os-release'
REDHAT_RELEASE = '/etc/redhat-release'
DEBIAN_VERSION = '/etc/debian_version'

DEBIAN_IDS = frozenset({'ubuntu', 'debian'})
RHEL_IDS = frozenset({'rhel', 'centos', 'fedora', 'rocky', 'almalinux', 'amzn'})
X86_64_MACHINES = frozenset({'x86_64', 'amd64'})


def parse_os_release(content: str) -> Dict[str, str]:
    """Parse ``KEY=value`` lines of an os-release file, unquoting values."""
    fields = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, _, value = line.partition('=')
        try:
            tokens = shlex.split(value)
        except ValueError:
            tokens = [value.strip('"\'')]
        fields[key.strip()] = ' '.join(tokens)
    return fields


def classify_os(os_id: str, id_like: Iterable[str] = ()) -> OSFamily:
    for candidate in [os_id, *id_like]:
        candidate = candidate.lower()
        if candidate in DEBIAN_IDS:
            return OSFamily.DEBIAN_LIKE
        if candidate in RHEL_IDS:
            return OSFamily.RHEL_LIKE
    return OSFamily.UNSUPPORTED


def classify_arch(machine: str) -> Architecture:
    return Architecture.X86_64 if machine.lower() in X86_64_MACHINES else Architecture.OTHER


def detect_platform(host: HostState) -> PlatformProfile:
    """Identify the OS family and architecture of the host.

    Args:
        host: Host to inspect

    Returns:
        PlatformProfile: The detected profile. Unknown systems map to
        ``OSFamily.UNSUPPORTED`` / ``Architecture.OTHER`` rather than raising.
    """
    os_release = host.read_text(OS_RELEASE)
    if os_release is not None:
        fields = parse_os_release(os_release)
        os_id = fields.get('ID', '')
        os_family = classify_os(os_id, fields.get('ID_LIKE', '').split())
    elif host.exists(REDHAT_RELEASE):
        os_id, os_family = 'rhel', OSFamily.RHEL_LIKE
    elif host.exists(DEBIAN_VERSION):
        os_id, os_family = 'debian', OSFamily.DEBIAN_LIKE
    else:
        os_id, os_family = 'unknown', OSFamily.UNSUPPORTED

    machine = host.machine()
    profile = PlatformProfile(
        os_family=os_family,
        arch=classify_arch(machine),
        os_id=os_id,
        machine=machine,
    )
    logger.info(f"Detected OS: {os_id} ({os_family.value}), architecture: {machine}")
    return profile
