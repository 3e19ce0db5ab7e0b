"""Preflight validation and host preparation.

Checks run before any mutation: privilege first, then CPU and memory.
Only then is the host touched (hostname, swap, IP forwarding), and
each mutation is skipped when the host already matches.
"""

import logging

from ...config import Config
from .errors import ConfigurationError, PrivilegeError, ResourceError
from .host import CommandRunner, HostState
from .models import NodeConfig

logger = logging.getLogger("kubeprep.provision.preflight")

FSTAB = '/etc/fstab'
SYSCTL_CONF = '/etc/sysctl.d/k8s.conf'
IP_FORWARD_KEY = 'net.ipv4.ip_forward'
IP_FORWARD_LINE = f'{IP_FORWARD_KEY} = 1'


def comment_swap_entries(fstab: str) -> str:
    """Comment out every active swap entry of an fstab.

    Lines that are already commented, blank, or not of type ``swap`` are
    returned untouched, so applying this twice changes nothing.
    """
    lines = []
    for line in fstab.splitlines(keepends=True):
        stripped = line.strip()
        fields = stripped.split()
        if stripped and not stripped.startswith('#') and len(fields) >= 3 and fields[2] == 'swap':
            line = '#' + line
        lines.append(line)
    return ''.join(lines)


def _sysctl_key(line: str) -> str:
    return line.split('=', 1)[0].strip() if '=' in line else ''


def ensure_ip_forward_line(content: str) -> str:
    """Return sysctl drop-in content with exactly one enabling entry."""
    kept = [
        line for line in content.splitlines()
        if _sysctl_key(line) != IP_FORWARD_KEY
    ]
    kept.append(IP_FORWARD_LINE)
    return '\n'.join(kept) + '\n'


class PreflightValidator:
    """Validate the execution context and apply host-level prerequisites."""

    def __init__(
        self,
        host: HostState,
        runner: CommandRunner,
        min_cpus: int = Config.MIN_CPUS,
        min_memory_gib: int = Config.MIN_MEMORY_GIB,
    ):
        self.host = host
        self.runner = runner
        self.min_cpus = min_cpus
        self.min_memory_gib = min_memory_gib

    def run(self, node: NodeConfig) -> None:
        self.check_privileges()
        self.check_resources()
        self.set_hostname(node.hostname)
        self.disable_swap()
        self.enable_ip_forwarding()

    def check_privileges(self) -> None:
        if not self.host.is_privileged():
            raise PrivilegeError("This tool must be run as root or with sudo.")

    def check_resources(self) -> None:
        logger.info("Checking memory and CPU requirements...")
        cpus = self.host.cpu_count()
        memory = self.host.memory_gib()
        logger.debug(f"Detected {cpus} CPU(s) and {memory} GiB of memory")
        if cpus < self.min_cpus or memory < self.min_memory_gib:
            raise ResourceError(
                f"CPU or memory below minimum requirements "
                f"({self.min_cpus} cores, {self.min_memory_gib}GB RAM): "
                f"found {cpus} cores, {memory}GB RAM"
            )

    def set_hostname(self, hostname: str) -> None:
        if self.host.current_hostname() == hostname:
            logger.info(f"Hostname already set to {hostname}")
            return
        logger.info(f"Setting hostname to {hostname}...")
        self.runner.run(['hostnamectl', 'set-hostname', hostname])

    def disable_swap(self) -> None:
        logger.info("Disabling swap...")
        if self.host.swap_enabled():
            self.runner.run(['swapoff', '-a'])

        # Keep swap disabled across reboots
        fstab = self.host.read_text(FSTAB)
        if fstab is not None:
            self.host.write_if_changed(FSTAB, comment_swap_entries(fstab))

    def enable_ip_forwarding(self) -> None:
        logger.info("Enabling IP forwarding...")
        current = self.host.read_text(SYSCTL_CONF, default='')
        self.host.write_if_changed(SYSCTL_CONF, ensure_ip_forward_line(current))
        self.runner.run(['sysctl', '--system'])

        # The reload can succeed while another drop-in overrides the value
        persisted = self.host.read_text(SYSCTL_CONF, default='')
        entries = [line.strip() for line in persisted.splitlines() if _sysctl_key(line) == IP_FORWARD_KEY]
        if entries != [IP_FORWARD_LINE]:
            raise ConfigurationError(f"IP forwarding not persisted in {SYSCTL_CONF}")
        if not self.host.ip_forward_enabled():
            raise ConfigurationError("IP forwarding not enabled after reloading kernel parameters")
