"""Node provisioning for kubeadm clusters.

This package prepares a single host as a control-plane or worker node.
It's organized into several focused modules:

- host: external command boundary and host state queries
- preflight: privilege, resources, hostname, swap and IP forwarding
- platform: OS family and architecture detection
- packages: apt and dnf strategies
- versions: upstream version resolution and pinning
- components: containerd, runc and CNI plugins
- agent: kubelet, kubeadm and kubectl
- bootstrap: control-plane init or worker instructions
- pipeline: ordered execution of all of the above
- models, errors: data types and the error taxonomy
"""

from .agent import AgentInstaller
from .bootstrap import RoleBootstrapper, check_manifest
from .components import ComponentInstaller, patch_containerd_config
from .errors import (
    ConfigurationError,
    ExternalToolError,
    InstallationError,
    PrivilegeError,
    ProvisioningError,
    ResourceError,
    UnsupportedPlatformError,
    VersionResolutionError,
)
from .host import CommandResult, CommandRunner, HostState
from .models import (
    Architecture,
    BootstrapArtifacts,
    NodeConfig,
    NodeRole,
    OSFamily,
    PlatformProfile,
    ProvisionResult,
    ResolvedVersions,
    VersionPins,
)
from .packages import AptPackageManager, DnfPackageManager, package_manager_for
from .pipeline import ProvisioningPipeline
from .platform import detect_platform
from .preflight import PreflightValidator
from .versions import VersionResolver

__all__ = [
    'AgentInstaller',
    'RoleBootstrapper',
    'check_manifest',
    'ComponentInstaller',
    'patch_containerd_config',
    'ConfigurationError',
    'ExternalToolError',
    'InstallationError',
    'PrivilegeError',
    'ProvisioningError',
    'ResourceError',
    'UnsupportedPlatformError',
    'VersionResolutionError',
    'CommandResult',
    'CommandRunner',
    'HostState',
    'Architecture',
    'BootstrapArtifacts',
    'NodeConfig',
    'NodeRole',
    'OSFamily',
    'PlatformProfile',
    'ProvisionResult',
    'ResolvedVersions',
    'VersionPins',
    'AptPackageManager',
    'DnfPackageManager',
    'package_manager_for',
    'ProvisioningPipeline',
    'detect_platform',
    'PreflightValidator',
    'VersionResolver',
]
