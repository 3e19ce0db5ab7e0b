"""Container runtime stack installation.

Installs containerd, runc and the CNI plugins for the resolved versions,
then generates and patches the containerd configuration. The containerd
service is enabled before configuration because generating the default
configuration runs the containerd binary itself.
"""

import logging
import os
import re
import tarfile
import tempfile
from pathlib import Path
from typing import Optional, Tuple

import requests

from ...config import Config
from .errors import ConfigurationError, InstallationError, UnsupportedPlatformError
from .host import CommandRunner, HostState
from .models import Architecture, PlatformProfile, ResolvedVersions

logger = logging.getLogger("kubeprep.provision.components")

CONTAINERD_URL = (
    'https://github.com/containerd/containerd/releases/download/'
    'v{version}/containerd-{version}-linux-{arch}.tar.gz'
)
CONTAINERD_UNIT_URL = 'https://raw.githubusercontent.com/containerd/containerd/main/containerd.service'
RUNC_URL = 'https://github.com/opencontainers/runc/releases/download/v{version}/runc.{arch}'
CNI_PLUGINS_URL = (
    'https://github.com/containernetworking/plugins/releases/download/'
    'v{version}/cni-plugins-linux-{arch}-v{version}.tgz'
)

CONTAINERD_PREFIX = '/usr/local'
CONTAINERD_UNIT = '/usr/local/lib/systemd/system/containerd.service'
CONTAINERD_CONFIG = '/etc/containerd/config.toml'
RUNC_PATH = '/usr/local/sbin/runc'
CNI_BIN_DIR = '/opt/cni/bin'

_DISABLED_CRI_RE = re.compile(r'^(\s*)disabled_plugins\s*=.*cri.*$', re.MULTILINE)
_SYSTEMD_CGROUP_RE = re.compile(r'SystemdCgroup\s*=\s*false')
_VERSION_3_RE = re.compile(r'^[ \t]*version[ \t]*=[ \t]*3[ \t]*$', re.MULTILINE)
_TABLE_RE = re.compile(r'^[ \t]*\[', re.MULTILINE)
_CRI_SECTION_RE = re.compile(
    r'''^[ \t]*\[plugins\.(?:'io\.containerd\.grpc\.v1\.cri'|"io\.containerd\.grpc\.v1\.cri")\][ \t]*$''',
    re.MULTILINE,
)
_PINNED_IMAGES_RE = re.compile(
    r'''^[ \t]*\[plugins\.(?:'io\.containerd\.cri\.v1\.images'|"io\.containerd\.cri\.v1\.images")'''
    r'''\.pinned_images\][ \t]*$''',
    re.MULTILINE,
)
_RUNC_OPTIONS_RE = re.compile(
    r'''^[ \t]*\[plugins\.(?:'[^'\n]+'|"[^"\n]+")\.containerd\.runtimes\.runc\.options\][ \t]*$''',
    re.MULTILINE,
)
PINNED_IMAGES_HEADER = "[plugins.'io.containerd.cri.v1.images'.pinned_images]"


def _table_span(config: str, header_re: re.Pattern) -> Optional[Tuple[int, int]]:
    """Start and end offsets of the body of the first table matching ``header_re``."""
    header = header_re.search(config)
    if not header:
        return None
    following = _TABLE_RE.search(config, header.end())
    return header.end(), following.start() if following else len(config)


def _key_re(key: str) -> re.Pattern:
    return re.compile(rf'^([ \t]*){key}[ \t]*=.*$', re.MULTILINE)


def _set_table_key(config: str, header_re: re.Pattern, key: str, line: str) -> Optional[str]:
    """Set ``key`` inside a table, inserting it under the header when absent.

    Returns None when the table does not exist.
    """
    span = _table_span(config, header_re)
    if span is None:
        return None
    start, end = span
    body = config[start:end]
    key_re = _key_re(key)
    if key_re.search(body):
        body = key_re.sub(lambda m: m.group(1) + line, body, count=1)
    else:
        header_line = config[config.rfind('\n', 0, start) + 1:start]
        indent = header_line[:len(header_line) - len(header_line.lstrip())] + '  '
        body = f"\n{indent}{line}{body}"
    return config[:start] + body + config[end:]


def _table_has(config: str, header_re: re.Pattern, key: str, value: str) -> bool:
    span = _table_span(config, header_re)
    if span is None:
        return False
    value_re = re.compile(rf'''^[ \t]*{key}[ \t]*=[ \t]*(['"]){re.escape(value)}\1[ \t]*$''', re.MULTILINE)
    return value_re.search(config[span[0]:span[1]]) is not None


def uses_pinned_images(config: str) -> bool:
    """True for the version 3 format of containerd 2.x.

    There the pause image is the ``sandbox`` entry of the CRI images
    plugin's ``pinned_images`` table; ``sandbox_image`` is ignored.
    """
    return bool(_VERSION_3_RE.search(config) or _PINNED_IMAGES_RE.search(config))


def patch_containerd_config(config: str, pause_image: str) -> str:
    """Apply the three patches kubeadm nodes need to a default containerd config.

    - the CRI plugin is removed from ``disabled_plugins``
    - runc uses the systemd cgroup driver, matching the kubelet
    - the sandbox (pause) image is pinned where the config format reads it:
      ``pinned_images.sandbox`` for version 3, ``sandbox_image`` in the CRI
      plugin section before that

    The result is stable: patching an already patched config is a no-op.
    """
    config = _DISABLED_CRI_RE.sub(r'\1disabled_plugins = []', config)
    config = _SYSTEMD_CGROUP_RE.sub('SystemdCgroup = true', config)
    if not _key_re('SystemdCgroup').search(config):
        config = _set_table_key(config, _RUNC_OPTIONS_RE, 'SystemdCgroup', 'SystemdCgroup = true') or config

    if uses_pinned_images(config):
        sandbox_line = f'sandbox = "{pause_image}"'
        patched = _set_table_key(config, _PINNED_IMAGES_RE, 'sandbox', sandbox_line)
        if patched is None:
            patched = f"{config.rstrip()}\n\n{PINNED_IMAGES_HEADER}\n  {sandbox_line}\n"
        return patched

    sandbox_line = f'sandbox_image = "{pause_image}"'
    sandbox_re = _key_re('sandbox_image')
    if sandbox_re.search(config):
        return sandbox_re.sub(lambda m: m.group(1) + sandbox_line, config)
    return _set_table_key(config, _CRI_SECTION_RE, 'sandbox_image', sandbox_line) or config


def verify_containerd_config(config: str, pause_image: str) -> None:
    if 'SystemdCgroup = true' not in config:
        raise ConfigurationError(f"{CONTAINERD_CONFIG} does not enable the systemd cgroup driver")
    if uses_pinned_images(config):
        pinned = _table_has(config, _PINNED_IMAGES_RE, 'sandbox', pause_image)
    else:
        pinned = _table_has(config, _CRI_SECTION_RE, 'sandbox_image', pause_image)
    if not pinned:
        raise ConfigurationError(f"{CONTAINERD_CONFIG} does not pin the sandbox image {pause_image}")
    if _DISABLED_CRI_RE.search(config):
        raise ConfigurationError(f"{CONTAINERD_CONFIG} still disables the CRI plugin")


def reports_version(output: str, version: str) -> bool:
    """True if ``output`` names exactly ``version``, with or without a ``v`` prefix.

    ``1.7.2`` does not match ``v1.7.22`` and ``1.1.1`` does not match ``1.1.14``.
    """
    pattern = rf'(?<![\w.])v?{re.escape(version)}(?![\w.])'
    return re.search(pattern, output) is not None


def _check_members(tar: tarfile.TarFile, target: Path, archive_name: str) -> None:
    root = target.resolve()
    for member in tar.getmembers():
        if not (root / member.name).resolve().is_relative_to(root):
            raise InstallationError(f"{archive_name}: refusing to extract {member.name} outside {root}")


class ComponentInstaller:
    """Fetch, place and activate containerd, runc and the CNI plugins."""

    def __init__(
        self,
        host: HostState,
        runner: CommandRunner,
        http,
        pause_image: str = Config.PAUSE_IMAGE,
    ):
        self.host = host
        self.runner = runner
        self.http = http
        self.pause_image = pause_image

    def install(self, profile: PlatformProfile, versions: ResolvedVersions) -> None:
        if profile.arch is not Architecture.X86_64:
            raise UnsupportedPlatformError(f"Unsupported architecture: {profile.machine or profile.arch.value}")
        arch = profile.arch.release_arch

        with tempfile.TemporaryDirectory(prefix='kubeprep-') as workdir:
            workdir = Path(workdir)
            self.install_containerd(versions.containerd, arch, workdir)
            self.install_containerd_service()
            self.install_runc(versions.runc, arch, workdir)
            self.install_cni_plugins(versions.cni_plugins, arch, workdir)
        self.configure_containerd()

    def _download(self, url: str, dest: Path) -> Path:
        try:
            return self.http.download(url, dest)
        except requests.RequestException as e:
            raise InstallationError(f"Failed to download {url}: {e}") from e

    def _extract(self, archive: Path, destination: str) -> None:
        target = self.host.makedirs(destination)
        try:
            with tarfile.open(archive, 'r:gz') as tar:
                if hasattr(tarfile, 'tar_filter'):
                    tar.extractall(target, filter='tar')
                else:
                    # Interpreters without extraction filters
                    _check_members(tar, target, archive.name)
                    tar.extractall(target)
        except (tarfile.TarError, OSError) as e:
            raise InstallationError(f"Failed to extract {archive.name} into {destination}: {e}") from e

    def _reports_version(self, binary: str, version: str) -> bool:
        if self.host.which(binary) is None:
            return False
        result = self.runner.run([binary, '--version'], check=False)
        return result.ok and reports_version(result.stdout, version)

    def install_containerd(self, version: str, arch: str, workdir: Path) -> None:
        if self._reports_version('containerd', version):
            logger.info(f"containerd {version} already installed")
            return

        logger.info(f"Installing containerd {version}...")
        archive = self._download(
            CONTAINERD_URL.format(version=version, arch=arch),
            workdir / 'containerd.tar.gz',
        )
        self._extract(archive, CONTAINERD_PREFIX)

        if self.host.which('containerd') is None:
            raise InstallationError("containerd installation failed: binary not found on PATH")

    def install_containerd_service(self) -> None:
        if not self.host.exists(CONTAINERD_UNIT):
            logger.info("Installing containerd systemd unit...")
            self._download(CONTAINERD_UNIT_URL, self.host.path(CONTAINERD_UNIT))

        self.runner.run(['systemctl', 'daemon-reload'])
        self.runner.run(['systemctl', 'enable', '--now', 'containerd'])
        if not self.host.service_active('containerd'):
            raise InstallationError("containerd service is not active after enabling it")

    def install_runc(self, version: str, arch: str, workdir: Path) -> None:
        if self._reports_version('runc', version):
            logger.info(f"runc {version} already installed")
            return

        logger.info(f"Installing runc {version}...")
        binary = self._download(RUNC_URL.format(version=version, arch=arch), workdir / f'runc.{arch}')
        target = self.host.path(RUNC_PATH)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(binary.read_bytes())
        os.chmod(target, 0o755)

        if not os.access(target, os.X_OK):
            raise InstallationError(f"runc installation failed: {RUNC_PATH} is not executable")

    def install_cni_plugins(self, version: str, arch: str, workdir: Path) -> None:
        logger.info(f"Installing CNI plugins {version}...")
        archive = self._download(
            CNI_PLUGINS_URL.format(version=version, arch=arch),
            workdir / 'cni-plugins.tgz',
        )
        self._extract(archive, CNI_BIN_DIR)

    def configure_containerd(self) -> None:
        logger.info("Configuring containerd...")
        default_config = self.runner.run(['containerd', 'config', 'default']).stdout
        config = patch_containerd_config(default_config, self.pause_image)
        verify_containerd_config(config, self.pause_image)

        self.host.write_text(CONTAINERD_CONFIG, config)
        self.runner.run(['systemctl', 'restart', 'containerd'])
