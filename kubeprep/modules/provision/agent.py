"""Installation of kubelet, kubeadm and kubectl."""

import logging
import re

from .host import CommandRunner, HostState
from .models import OSFamily
from .packages import PackageManager

logger = logging.getLogger("kubeprep.provision.agent")

KUBERNETES_PACKAGES = ('kubelet', 'kubeadm', 'kubectl')
HELD_PACKAGES = ('kubelet', 'kubeadm')
APT_REPO_PREREQUISITES = ('apt-transport-https', 'ca-certificates', 'curl', 'gpg')
SELINUX_CONFIG = '/etc/selinux/config'

_SELINUX_ENFORCING_RE = re.compile(r'^SELINUX=enforcing$', re.MULTILINE)


class AgentInstaller:
    """Make kubelet, kubeadm and kubectl available and running.

    The kubelet version has to stay in lockstep with the control plane, so
    kubelet and kubeadm are held after install where the package manager
    supports it.
    """

    def __init__(self, host: HostState, runner: CommandRunner, http, packages: PackageManager):
        self.host = host
        self.runner = runner
        self.http = http
        self.packages = packages

    def install(self, kubernetes_track: str) -> None:
        logger.info(f"Installing Kubernetes {kubernetes_track} components...")

        if self.packages.family is OSFamily.DEBIAN_LIKE:
            self.packages.install(APT_REPO_PREREQUISITES)
        else:
            self.relax_selinux()

        self.packages.add_kubernetes_repository(kubernetes_track, self.http)
        self.packages.install(KUBERNETES_PACKAGES)

        self.packages.hold(HELD_PACKAGES)

        self.runner.run(['systemctl', 'enable', '--now', 'kubelet'])

    def relax_selinux(self) -> None:
        """Switch SELinux to permissive now and on the next boot."""
        if self.host.which('getenforce') is not None:
            result = self.runner.run(['getenforce'], check=False)
            if result.ok and result.stdout.strip().lower() == 'enforcing':
                logger.warning("Setting SELinux to permissive mode, required by the kubelet")
                self.runner.run(['setenforce', '0'])

        config = self.host.read_text(SELINUX_CONFIG)
        if config is not None:
            self.host.write_if_changed(
                SELINUX_CONFIG,
                _SELINUX_ENFORCING_RE.sub('SELINUX=permissive', config),
            )
