import io
import os
import tarfile
from pathlib import Path

import pytest

from kubeprep.modules.provision.errors import ExternalToolError
from kubeprep.modules.provision.host import CommandResult, HostState
from kubeprep.modules.provision.models import InvokingUser

DEFAULT_CONTAINERD_CONFIG = """version = 2
disabled_plugins = ["io.containerd.grpc.v1.cri"]

[plugins]
  [plugins."io.containerd.grpc.v1.cri"]
    sandbox_image = "registry.k8s.io/pause:3.8"
    [plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
      SystemdCgroup = false
"""

# Excerpt of `containerd config default` from containerd 2.x
DEFAULT_CONTAINERD_V3_CONFIG = """version = 3
root = '/var/lib/containerd'
state = '/run/containerd'
disabled_plugins = []

[plugins]
  [plugins.'io.containerd.cri.v1.images']
    snapshotter = 'overlayfs'
    disable_snapshot_annotations = true

    [plugins.'io.containerd.cri.v1.images'.pinned_images]
      sandbox = 'registry.k8s.io/pause:3.10'

  [plugins.'io.containerd.cri.v1.runtime']
    enable_selinux = false

    [plugins.'io.containerd.cri.v1.runtime'.containerd]
      default_runtime_name = 'runc'

        [plugins.'io.containerd.cri.v1.runtime'.containerd.runtimes.runc.options]
          BinaryName = ''
          SystemdCgroup = false

  [plugins.'io.containerd.grpc.v1.cri']
    disable_tcp_service = true
    stream_server_address = '127.0.0.1'
"""

RELEASE_TAGS = {
    'containerd/containerd': 'v1.7.22',
    'opencontainers/runc': 'v1.1.14',
    'containernetworking/plugins': 'v1.5.1',
}
JOIN_COMMAND = 'kubeadm join 10.0.0.10:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash sha256:00ff'


def make_tarball(members):
    """Build a gzipped tarball from ``{name: (content, mode)}``."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode='w:gz') as tar:
        for name, (content, mode) in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = mode
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeRunner:
    """Records commands and answers them from prefix-matched handlers."""

    def __init__(self):
        self.calls = []
        self.handlers = {}

    def on(self, prefix, handler):
        """Register a handler: a CommandResult, an int return code, or a callable."""
        self.handlers[tuple(prefix)] = handler

    def commands(self):
        return [' '.join(argv) for argv in self.calls]

    def ran(self, *prefix):
        return any(tuple(argv[:len(prefix)]) == prefix for argv in self.calls)

    def run(self, argv, *, check=True, input_text=None, env=None, timeout=None):
        argv = [str(a) for a in argv]
        self.calls.append(argv)

        handler = None
        for prefix in sorted(self.handlers, key=len, reverse=True):
            if tuple(argv[:len(prefix)]) == prefix:
                handler = self.handlers[prefix]
                break

        if handler is None:
            result = CommandResult(argv, 0, '', '')
        elif isinstance(handler, CommandResult):
            result = handler
        elif isinstance(handler, int):
            result = CommandResult(argv, handler, '', 'simulated failure' if handler else '')
        else:
            result = handler(argv, input_text)

        if check and result.returncode != 0:
            raise ExternalToolError(argv, result.returncode, result.stderr)
        return result


class FakeHost(HostState):
    """HostState rooted in a temporary directory with injectable system facts."""

    def __init__(self, runner, root, user):
        super().__init__(runner, root=root)
        self.privileged = True
        self.cpus = 4
        self.arch = 'x86_64'
        self.user = user

    def is_privileged(self):
        return self.privileged

    def cpu_count(self):
        return self.cpus

    def machine(self):
        return self.arch

    def invoking_user(self):
        return self.user


class FakeHttp:
    """Serves upstream metadata and artifacts from memory."""

    def __init__(self):
        self.requests = []
        self.tags = dict(RELEASE_TAGS)
        self.stable = 'v1.31.2\n'
        self.failures = {}

    def _record(self, url):
        self.requests.append(url)
        for fragment, exc in self.failures.items():
            if fragment in url:
                raise exc

    def get_json(self, url):
        self._record(url)
        for repo, tag in self.tags.items():
            if f'/repos/{repo}/' in url:
                return {'tag_name': tag}
        return {}

    def get_text(self, url):
        self._record(url)
        if url.endswith('stable.txt'):
            return self.stable
        if url.endswith('Release.key'):
            return '-----BEGIN PGP PUBLIC KEY BLOCK-----\nfake\n-----END PGP PUBLIC KEY BLOCK-----\n'
        return ''

    def download(self, url, dest):
        self._record(url)
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if '/containerd/releases/' in url:
            dest.write_bytes(make_tarball({
                'bin/containerd': (b'#!/bin/sh\n', 0o755),
                'bin/ctr': (b'#!/bin/sh\n', 0o755),
            }))
        elif '/plugins/releases/' in url:
            dest.write_bytes(make_tarball({
                'bridge': (b'#!/bin/sh\n', 0o755),
                'loopback': (b'#!/bin/sh\n', 0o755),
            }))
        elif url.endswith('containerd.service'):
            dest.write_text('[Unit]\nDescription=containerd container runtime\n')
        elif '/runc/releases/' in url:
            dest.write_bytes(b'\x7fELF')
        else:
            dest.write_text(f'# from {url}\napiVersion: v1\nkind: Namespace\nmetadata:\n  name: calico-system\n')
        return dest

    def downloads(self):
        return [url for url in self.requests if 'api.github.com' not in url and not url.endswith(('.txt', '.key'))]


@pytest.fixture
def runner(tmp_path):
    runner = FakeRunner()
    root = tmp_path / 'root'

    def write(path, content):
        target = root / path.lstrip('/')
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)

    def set_hostname(argv, _input):
        write('/etc/hostname', argv[-1] + '\n')
        return CommandResult(argv, 0, '', '')

    def sysctl_system(argv, _input):
        write('/proc/sys/net/ipv4/ip_forward', '1\n')
        return CommandResult(argv, 0, '', '')

    def swapoff(argv, _input):
        write('/proc/swaps', 'Filename\tType\tSize\tUsed\tPriority\n')
        return CommandResult(argv, 0, '', '')

    def kubeadm_init(argv, _input):
        write('/etc/kubernetes/admin.conf', 'apiVersion: v1\nkind: Config\n')
        return CommandResult(argv, 0, 'Your Kubernetes control-plane has initialized successfully!\n', '')

    runner.on(['hostnamectl', 'set-hostname'], set_hostname)
    runner.on(['sysctl', '--system'], sysctl_system)
    runner.on(['swapoff', '-a'], swapoff)
    runner.on(['systemctl', 'is-active'], CommandResult(['systemctl', 'is-active'], 0, 'active\n', ''))
    runner.on(['containerd', 'config', 'default'],
              CommandResult(['containerd', 'config', 'default'], 0, DEFAULT_CONTAINERD_CONFIG, ''))
    runner.on(['kubeadm', 'init'], kubeadm_init)
    runner.on(['kubeadm', 'token', 'create'],
              CommandResult(['kubeadm', 'token', 'create'], 0, JOIN_COMMAND + '\n', ''))
    return runner


@pytest.fixture
def host(runner, tmp_path):
    root = tmp_path / 'root'
    home = Path('/home/operator')
    (root / 'home/operator').mkdir(parents=True)
    (root / 'proc/sys/net/ipv4').mkdir(parents=True)
    (root / 'proc/meminfo').write_text('MemTotal:        8045324 kB\nMemFree:         6045324 kB\n')
    (root / 'proc/swaps').write_text(
        'Filename\tType\tSize\tUsed\tPriority\n/swap.img\tfile\t2097148\t0\t-2\n'
    )
    (root / 'proc/sys/net/ipv4/ip_forward').write_text('0\n')
    (root / 'etc').mkdir(parents=True)
    (root / 'etc/hostname').write_text('localhost\n')
    (root / 'etc/fstab').write_text(
        'UUID=abcd / ext4 defaults 0 1\n/swap.img none swap sw 0 0\n'
    )
    (root / 'etc/os-release').write_text('NAME="Ubuntu"\nID=ubuntu\nID_LIKE=debian\nVERSION_ID="24.04"\n')
    user = InvokingUser(name='operator', uid=os.getuid(), gid=os.getgid(), home=home)
    return FakeHost(runner, root, user)


@pytest.fixture
def http():
    return FakeHttp()
