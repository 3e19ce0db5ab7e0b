"""Package-manager strategies, one per supported OS family.

The strategy is selected once from the ``PlatformProfile`` and injected
into later stages, so no stage matches OS strings again.
"""

import logging
import os
from typing import Sequence

import requests
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .errors import InstallationError, UnsupportedPlatformError
from .host import CommandRunner, HostState
from .models import OSFamily, PlatformProfile

logger = logging.getLogger("kubeprep.provision.packages")

KUBERNETES_REPO_BASE = 'https://pkgs.k8s.io/core:/stable:/v{track}'

APT_KEYRING_DIR = '/etc/apt/keyrings'
APT_KEYRING = f'{APT_KEYRING_DIR}/kubernetes-apt-keyring.gpg'
APT_SOURCES = '/etc/apt/sources.list.d/kubernetes.list'
YUM_REPO = '/etc/yum.repos.d/kubernetes.repo'


def get_template_path() -> str:
    """Get the absolute path to the templates directory."""
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')


def render_template(name: str, **context) -> str:
    env = Environment(
        loader=FileSystemLoader(get_template_path()),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    return env.get_template(name).render(**context)


def kubernetes_repo_base(track: str) -> str:
    return KUBERNETES_REPO_BASE.format(track=track)


class PackageManager:
    """Install packages and register the Kubernetes repository."""

    family: OSFamily = OSFamily.UNSUPPORTED
    host_tools: Sequence[str] = ()

    def __init__(self, host: HostState, runner: CommandRunner):
        self.host = host
        self.runner = runner

    def refresh(self) -> None:
        raise NotImplementedError

    def install(self, packages: Sequence[str]) -> None:
        raise NotImplementedError

    def hold(self, packages: Sequence[str]) -> None:
        raise NotImplementedError

    def add_kubernetes_repository(self, track: str, http) -> None:
        raise NotImplementedError


class AptPackageManager(PackageManager):
    family = OSFamily.DEBIAN_LIKE
    host_tools = ('iproute2',)

    ENV = {'DEBIAN_FRONTEND': 'noninteractive'}

    def refresh(self) -> None:
        logger.info("Updating package lists...")
        self.runner.run(['apt-get', 'update', '-y', '-qq'], env=self.ENV)

    def install(self, packages: Sequence[str]) -> None:
        logger.info(f"Installing packages: {' '.join(packages)}")
        self.runner.run(['apt-get', 'install', '-y', '-qq', *packages], env=self.ENV)

    def hold(self, packages: Sequence[str]) -> None:
        logger.info(f"Holding packages at their installed version: {' '.join(packages)}")
        self.runner.run(['apt-mark', 'hold', *packages])

    def add_kubernetes_repository(self, track: str, http) -> None:
        base_url = kubernetes_repo_base(track)
        key_url = f'{base_url}/deb/Release.key'
        try:
            release_key = http.get_text(key_url)
        except requests.RequestException as e:
            raise InstallationError(f"Failed to fetch repository key {key_url}: {e}") from e

        self.host.makedirs(APT_KEYRING_DIR)
        self.runner.run(
            ['gpg', '--dearmor', '--yes', '-o', str(self.host.path(APT_KEYRING))],
            input_text=release_key,
        )
        self.host.write_text(
            APT_SOURCES,
            render_template('kubernetes.list.j2', keyring=APT_KEYRING, base_url=base_url),
        )
        self.refresh()


class DnfPackageManager(PackageManager):
    family = OSFamily.RHEL_LIKE
    host_tools = ('iproute', 'iproute-tc')

    def refresh(self) -> None:
        logger.info("Refreshing package metadata...")
        self.runner.run(['dnf', 'makecache', '-y', '-q'])

    def install(self, packages: Sequence[str]) -> None:
        logger.info(f"Installing packages: {' '.join(packages)}")
        self.runner.run(['dnf', 'install', '-y', '-q', *packages])

    def hold(self, packages: Sequence[str]) -> None:
        # Version locks need the dnf versionlock plugin; the repository is
        # pinned to one minor track instead
        logger.info(f"Not holding {' '.join(packages)}: the repository only serves one minor version")

    def add_kubernetes_repository(self, track: str, http) -> None:
        # dnf verifies the repository key itself on first use
        self.host.write_text(
            YUM_REPO,
            render_template('kubernetes.repo.j2', base_url=kubernetes_repo_base(track)),
        )


def package_manager_for(profile: PlatformProfile, host: HostState, runner: CommandRunner) -> PackageManager:
    """Select the package-manager strategy for a platform.

    Raises:
        UnsupportedPlatformError: If the OS family has no strategy
    """
    for cls in (AptPackageManager, DnfPackageManager):
        if cls.family is profile.os_family:
            return cls(host, runner)
    raise UnsupportedPlatformError(f"Unsupported OS: {profile.os_id or 'unknown'}")
