"""The provisioning pipeline.

Stages run strictly in order and the first error aborts the run. Nothing
is rolled back: every stage is safe to repeat, so the recovery path is to
fix the reported cause and run the pipeline again.
"""

import logging
from typing import Optional

from ...config import Config
from .agent import AgentInstaller
from .bootstrap import RoleBootstrapper
from .components import ComponentInstaller
from .host import CommandRunner, HostState
from .models import NodeConfig, ProvisionResult, VersionPins
from .packages import package_manager_for
from .platform import detect_platform
from .preflight import PreflightValidator
from .versions import VersionResolver

logger = logging.getLogger("kubeprep.provision.pipeline")


class ProvisioningPipeline:
    """Prepare this host as a kubeadm control-plane or worker node."""

    def __init__(
        self,
        host: HostState,
        runner: CommandRunner,
        http,
        pins: Optional[VersionPins] = None,
        min_cpus: int = Config.MIN_CPUS,
        min_memory_gib: int = Config.MIN_MEMORY_GIB,
        pause_image: str = Config.PAUSE_IMAGE,
        pod_network_cidr: str = Config.POD_NETWORK_CIDR,
        calico_version: str = Config.CALICO_VERSION,
    ):
        self.host = host
        self.runner = runner
        self.http = http
        self.preflight = PreflightValidator(host, runner, min_cpus=min_cpus, min_memory_gib=min_memory_gib)
        self.resolver = VersionResolver(http, pins=pins)
        self.components = ComponentInstaller(host, runner, http, pause_image=pause_image)
        self.bootstrapper = RoleBootstrapper(
            host, runner, http,
            pod_network_cidr=pod_network_cidr,
            calico_version=calico_version,
        )

    def run(self, node: NodeConfig) -> ProvisionResult:
        """Run every stage for ``node``.

        Args:
            node: Hostname and role of this host

        Returns:
            ProvisionResult: Platform, versions and bootstrap artifacts of the run

        Raises:
            ProvisioningError: From the first stage that fails
        """
        logger.info(f"🚀 Provisioning {node.hostname} as {node.role.value} node")

        self.preflight.run(node)

        platform = detect_platform(self.host)
        packages = package_manager_for(platform, self.host, self.runner)
        packages.refresh()
        packages.install(packages.host_tools)

        versions = self.resolver.resolve()
        self.components.install(platform, versions)
        AgentInstaller(self.host, self.runner, self.http, packages).install(versions.kubernetes_track)

        artifacts = self.bootstrapper.run(node)
        logger.info("✅ Installation completed successfully.")
        return ProvisionResult(node=node, platform=platform, versions=versions, artifacts=artifacts)
