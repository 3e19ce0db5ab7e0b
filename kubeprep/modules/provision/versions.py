"""Resolution of upstream software versions.

Every run resolves "latest stable" again unless a version is pinned.
Either way, each value is normalized and validated before any download
URL is built from it.
"""

import logging
from typing import Callable, Optional

import requests

from .errors import VersionResolutionError
from .models import SEMVER_RE, TRACK_RE, ResolvedVersions, VersionPins, normalize_version

logger = logging.getLogger("kubeprep.provision.versions")

GITHUB_LATEST_RELEASE = 'https://api.github.com/repos/{repo}/releases/latest'
KUBERNETES_STABLE = 'https://dl.k8s.io/release/stable.txt'

SOURCES = {
    'containerd': 'containerd/containerd',
    'runc': 'opencontainers/runc',
    'cni-plugins': 'containernetworking/plugins',
}


def parse_semver(source: str, raw: Optional[str]) -> str:
    """Normalize a release tag and require ``MAJOR.MINOR.PATCH``."""
    version = normalize_version(raw)
    if not version:
        raise VersionResolutionError(source, "empty version tag")
    if not SEMVER_RE.match(version):
        raise VersionResolutionError(source, f"malformed version tag {raw!r}")
    return version


def parse_track(source: str, raw: Optional[str]) -> str:
    """Reduce a Kubernetes release (``v1.31.2`` or ``1.31``) to its ``major.minor`` track."""
    version = normalize_version(raw)
    if not version:
        raise VersionResolutionError(source, "empty version tag")
    if TRACK_RE.match(version):
        return version
    if not SEMVER_RE.match(version):
        raise VersionResolutionError(source, f"malformed version tag {raw!r}")
    major, minor, _ = version.split('.', 2)
    return f'{major}.{minor}'


class VersionResolver:
    """Resolve containerd, runc, CNI plugins and the Kubernetes track."""

    def __init__(self, http, pins: Optional[VersionPins] = None):
        self.http = http
        self.pins = pins or VersionPins()

    def resolve(self) -> ResolvedVersions:
        """Resolve all four versions or fail naming the first bad source.

        Returns:
            ResolvedVersions: Fully validated versions

        Raises:
            VersionResolutionError: If any source yields no usable version
        """
        logger.info("Resolving component versions...")
        versions = ResolvedVersions(
            containerd=self._resolve('containerd', self.pins.containerd, parse_semver, self._latest_release),
            runc=self._resolve('runc', self.pins.runc, parse_semver, self._latest_release),
            cni_plugins=self._resolve('cni-plugins', self.pins.cni_plugins, parse_semver, self._latest_release),
            kubernetes_track=self._resolve('kubernetes', self.pins.kubernetes, parse_track, self._stable_kubernetes),
        )
        logger.info(
            f"Using containerd {versions.containerd}, runc {versions.runc}, "
            f"CNI plugins {versions.cni_plugins}, Kubernetes track {versions.kubernetes_track}"
        )
        return versions

    def _resolve(
        self,
        source: str,
        pinned: Optional[str],
        parse: Callable[[str, Optional[str]], str],
        fetch: Callable[[str], str],
    ) -> str:
        if pinned:
            version = parse(f'pinned {source}', pinned)
            logger.debug(f"{source} pinned to {version}")
            return version
        return parse(source, fetch(source))

    def _latest_release(self, source: str) -> str:
        url = GITHUB_LATEST_RELEASE.format(repo=SOURCES[source])
        try:
            payload = self.http.get_json(url)
        except requests.RequestException as e:
            raise VersionResolutionError(source, f"request to {url} failed: {e}") from e
        except ValueError as e:
            raise VersionResolutionError(source, f"invalid JSON from {url}") from e

        tag = payload.get('tag_name') if isinstance(payload, dict) else None
        if not isinstance(tag, str):
            raise VersionResolutionError(source, f"no tag_name in response from {url}")
        return tag

    def _stable_kubernetes(self, source: str) -> str:
        try:
            return self.http.get_text(KUBERNETES_STABLE)
        except requests.RequestException as e:
            raise VersionResolutionError(source, f"request to {KUBERNETES_STABLE} failed: {e}") from e
