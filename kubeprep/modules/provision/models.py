"""Data models for the node provisioning pipeline."""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import VersionResolutionError

SEMVER_RE = re.compile(r'^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?$')
TRACK_RE = re.compile(r'^\d+\.\d+$')


class NodeRole(str, Enum):
    """Node roles in the kubeadm cluster."""
    CONTROL_PLANE = 'control-plane'
    WORKER = 'worker'

    @classmethod
    def from_flag(cls, value: str) -> 'NodeRole':
        """Map a ``yes``/``no`` control-plane flag to a role (case-insensitive)."""
        normalized = (value or '').strip().lower()
        if normalized == 'yes':
            return cls.CONTROL_PLANE
        if normalized == 'no':
            return cls.WORKER
        raise ValueError(f"Expected 'yes' or 'no', got {value!r}")


class OSFamily(str, Enum):
    """Operating system families with a package-manager strategy."""
    DEBIAN_LIKE = 'debian-like'
    RHEL_LIKE = 'rhel-like'
    UNSUPPORTED = 'unsupported'


class Architecture(str, Enum):
    """CPU architectures known to the installer."""
    X86_64 = 'x86_64'
    OTHER = 'other'

    @property
    def release_arch(self) -> Optional[str]:
        """Architecture suffix used by upstream release archives."""
        return 'amd64' if self is Architecture.X86_64 else None


@dataclass(frozen=True)
class NodeConfig:
    """Resolved invocation for one pipeline run."""
    hostname: str
    role: NodeRole

    def __post_init__(self):
        if not self.hostname or not self.hostname.strip():
            raise ValueError("hostname cannot be empty")

    @property
    def is_control_plane(self) -> bool:
        return self.role is NodeRole.CONTROL_PLANE


@dataclass(frozen=True)
class PlatformProfile:
    """Detected OS family and architecture, fixed for the whole run."""
    os_family: OSFamily
    arch: Architecture
    os_id: str = ''
    machine: str = ''


@dataclass(frozen=True)
class VersionPins:
    """Explicit versions that replace an upstream "latest" lookup."""
    containerd: Optional[str] = None
    runc: Optional[str] = None
    cni_plugins: Optional[str] = None
    kubernetes: Optional[str] = None


def normalize_version(value: Optional[str]) -> str:
    """Strip whitespace and a single leading ``v`` from a release tag."""
    value = (value or '').strip()
    if value[:1] in ('v', 'V'):
        value = value[1:]
    return value


@dataclass(frozen=True)
class ResolvedVersions:
    """Concrete versions used for every download, all without a ``v`` prefix."""
    containerd: str
    runc: str
    cni_plugins: str
    kubernetes_track: str

    def __post_init__(self):
        for source, value in (
            ('containerd', self.containerd),
            ('runc', self.runc),
            ('cni-plugins', self.cni_plugins),
        ):
            if not value or not SEMVER_RE.match(value):
                raise VersionResolutionError(source, f"malformed version {value!r}")
        if not self.kubernetes_track or not TRACK_RE.match(self.kubernetes_track):
            raise VersionResolutionError(
                'kubernetes', f"malformed track {self.kubernetes_track!r}"
            )


@dataclass(frozen=True)
class InvokingUser:
    """The human user that should own the admin kubeconfig."""
    name: str
    uid: int
    gid: int
    home: Path


@dataclass(frozen=True)
class BootstrapArtifacts:
    """Outputs of the role bootstrap phase."""
    role: NodeRole
    kubeconfig_path: Optional[Path] = None
    join_command: Optional[str] = None


@dataclass(frozen=True)
class ProvisionResult:
    """Terminal result of a successful pipeline run."""
    node: NodeConfig
    platform: PlatformProfile
    versions: ResolvedVersions
    artifacts: BootstrapArtifacts
