"""Role-specific bootstrap.

A control-plane node initializes the cluster, receives an admin
kubeconfig for the invoking user, gets the Calico overlay and prints a
join command. A worker only gets instructions: joining needs a token
created on the control plane.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path

import requests
import yaml

from ...config import Config
from .errors import ExternalToolError, InstallationError
from .host import CommandRunner, HostState
from .models import BootstrapArtifacts, NodeConfig, NodeRole

logger = logging.getLogger("kubeprep.provision.bootstrap")

ADMIN_CONF = '/etc/kubernetes/admin.conf'
CALICO_MANIFEST_URL = 'https://raw.githubusercontent.com/projectcalico/calico/{version}/manifests/{name}'
# Order matters: the custom resources need the operator's CRDs
CALICO_MANIFESTS = (
    ('create', 'tigera-operator.yaml'),
    ('apply', 'custom-resources.yaml'),
)
WORKER_INSTRUCTIONS = "Worker node setup complete. Use 'kubeadm join' to connect to the cluster."


class RoleBootstrapper:
    """Run the bootstrap phase matching the node role."""

    def __init__(
        self,
        host: HostState,
        runner: CommandRunner,
        http,
        pod_network_cidr: str = Config.POD_NETWORK_CIDR,
        calico_version: str = Config.CALICO_VERSION,
    ):
        self.host = host
        self.runner = runner
        self.http = http
        self.pod_network_cidr = pod_network_cidr
        self.calico_version = calico_version

    def run(self, node: NodeConfig) -> BootstrapArtifacts:
        if node.role is NodeRole.CONTROL_PLANE:
            return self.bootstrap_control_plane()
        logger.info(WORKER_INSTRUCTIONS)
        return BootstrapArtifacts(role=NodeRole.WORKER)

    def bootstrap_control_plane(self) -> BootstrapArtifacts:
        logger.info("Setting up control plane...")
        # Not retried: a failed init needs `kubeadm reset` before it can run again
        self.runner.run(['kubeadm', 'init', f'--pod-network-cidr={self.pod_network_cidr}'])

        kubeconfig = self.install_admin_kubeconfig()
        self.deploy_network_overlay()
        join_command = self.create_join_command()
        return BootstrapArtifacts(
            role=NodeRole.CONTROL_PLANE,
            kubeconfig_path=kubeconfig,
            join_command=join_command,
        )

    def install_admin_kubeconfig(self) -> Path:
        """Copy the admin kubeconfig to ``~/.kube/config`` of the invoking user."""
        source = self.host.path(ADMIN_CONF)
        if not source.is_file():
            raise InstallationError(f"kubeadm init did not produce {ADMIN_CONF}")

        user = self.host.invoking_user()
        kube_dir = self.host.path(user.home) / '.kube'
        kube_dir.mkdir(parents=True, exist_ok=True)
        target = kube_dir / 'config'
        shutil.copyfile(source, target)

        os.chown(kube_dir, user.uid, user.gid)
        os.chown(target, user.uid, user.gid)
        os.chmod(target, 0o600)
        logger.info(f"Admin kubeconfig installed at {target} for {user.name}")
        return target

    def deploy_network_overlay(self) -> None:
        logger.info(f"Deploying Calico {self.calico_version} network overlay...")
        kubeconfig = str(self.host.path(ADMIN_CONF))
        with tempfile.TemporaryDirectory(prefix='kubeprep-calico-') as workdir:
            for verb, name in CALICO_MANIFESTS:
                url = CALICO_MANIFEST_URL.format(version=self.calico_version, name=name)
                try:
                    manifest = self.http.download(url, Path(workdir) / name)
                except requests.RequestException as e:
                    raise InstallationError(f"Failed to download {url}: {e}") from e
                check_manifest(manifest)
                self.runner.run(['kubectl', '--kubeconfig', kubeconfig, verb, '-f', str(manifest)])

    def create_join_command(self) -> str:
        argv = ['kubeadm', 'token', 'create', '--print-join-command']
        result = self.runner.run(argv)
        join_command = result.stdout.strip()
        if not join_command:
            raise ExternalToolError(argv, result.returncode, result.stderr,
                                    message="kubeadm returned an empty join command")

        logger.info("##################  Join command:  ##################")
        logger.info(join_command)
        logger.info("#####################################################")
        return join_command


def check_manifest(path: Path) -> None:
    """Make sure a downloaded manifest holds at least one Kubernetes object.

    Raises:
        InstallationError: If the file is not YAML or has no object with a ``kind``
    """
    path = Path(path)
    try:
        documents = [doc for doc in yaml.safe_load_all(path.read_text()) if doc]
    except yaml.YAMLError as e:
        raise InstallationError(f"{path.name} is not a valid manifest: {e}") from e
    if not any(isinstance(doc, dict) and doc.get('kind') for doc in documents):
        raise InstallationError(f"{path.name} contains no Kubernetes objects")
    logger.debug(f"{path.name}: {len(documents)} objects")
