import os
import stat

import pytest

from kubeprep.modules.provision.bootstrap import ADMIN_CONF, RoleBootstrapper, check_manifest
from kubeprep.modules.provision.errors import ExternalToolError, InstallationError
from kubeprep.modules.provision.host import CommandResult
from kubeprep.modules.provision.models import NodeConfig, NodeRole

from conftest import JOIN_COMMAND

CONTROL_PLANE = NodeConfig(hostname='node-b', role=NodeRole.CONTROL_PLANE)
WORKER = NodeConfig(hostname='node-a', role=NodeRole.WORKER)


def test_worker_does_not_touch_the_cluster(host, runner, http):
    artifacts = RoleBootstrapper(host, runner, http).run(WORKER)

    assert artifacts.role is NodeRole.WORKER
    assert artifacts.join_command is None
    assert artifacts.kubeconfig_path is None
    assert runner.calls == []
    assert http.requests == []


def test_control_plane_bootstrap(host, runner, http):
    artifacts = RoleBootstrapper(host, runner, http, pod_network_cidr='192.168.0.0/16').run(CONTROL_PLANE)

    assert runner.calls[0] == ['kubeadm', 'init', '--pod-network-cidr=192.168.0.0/16']
    assert artifacts.join_command == JOIN_COMMAND

    kubeconfig = artifacts.kubeconfig_path
    assert kubeconfig == host.path('/home/operator/.kube/config')
    assert kubeconfig.read_text() == host.read_text(ADMIN_CONF)
    info = kubeconfig.stat()
    assert (info.st_uid, info.st_gid) == (os.getuid(), os.getgid())
    assert stat.S_IMODE(info.st_mode) == 0o600


def test_overlay_manifests_applied_in_order(host, runner, http):
    RoleBootstrapper(host, runner, http, calico_version='v3.28.0').run(CONTROL_PLANE)

    kubectl = [argv for argv in runner.calls if argv[0] == 'kubectl']
    assert [argv[3] for argv in kubectl] == ['create', 'apply']
    assert kubectl[0][-1].endswith('tigera-operator.yaml')
    assert kubectl[1][-1].endswith('custom-resources.yaml')
    assert all(argv[1:3] == ['--kubeconfig', str(host.path(ADMIN_CONF))] for argv in kubectl)
    assert http.downloads() == [
        'https://raw.githubusercontent.com/projectcalico/calico/v3.28.0/manifests/tigera-operator.yaml',
        'https://raw.githubusercontent.com/projectcalico/calico/v3.28.0/manifests/custom-resources.yaml',
    ]


def test_join_command_requested_last(host, runner, http):
    RoleBootstrapper(host, runner, http).run(CONTROL_PLANE)

    assert runner.calls[-1] == ['kubeadm', 'token', 'create', '--print-join-command']


def test_init_failure_leaves_no_artifacts(host, runner, http):
    runner.on(['kubeadm', 'init'], 1)

    with pytest.raises(ExternalToolError):
        RoleBootstrapper(host, runner, http).run(CONTROL_PLANE)

    assert not host.exists('/home/operator/.kube/config')
    assert not runner.ran('kubectl')
    assert not runner.ran('kubeadm', 'token')
    assert http.requests == []


def test_operator_failure_stops_before_custom_resources(host, runner, http):
    runner.on(['kubectl', '--kubeconfig', str(host.path(ADMIN_CONF)), 'create'], 1)

    with pytest.raises(ExternalToolError):
        RoleBootstrapper(host, runner, http).run(CONTROL_PLANE)

    assert not any('apply' in argv for argv in runner.calls)


def test_missing_admin_conf(host, runner, http):
    runner.on(['kubeadm', 'init'], 0)

    with pytest.raises(InstallationError, match='admin.conf'):
        RoleBootstrapper(host, runner, http).run(CONTROL_PLANE)


def test_empty_join_command(host, runner, http):
    runner.on(['kubeadm', 'token', 'create'], CommandResult(['kubeadm'], 0, '\n', ''))

    with pytest.raises(ExternalToolError, match='empty join command'):
        RoleBootstrapper(host, runner, http).run(CONTROL_PLANE)


def test_error_page_instead_of_manifest(host, runner, http, monkeypatch):
    def download(url, dest):
        http.requests.append(url)
        dest.write_text('<html><body>rate limited</body></html>\n')
        return dest

    monkeypatch.setattr(http, 'download', download)

    with pytest.raises(InstallationError, match='tigera-operator.yaml'):
        RoleBootstrapper(host, runner, http).run(CONTROL_PLANE)

    assert not runner.ran('kubectl')


@pytest.mark.parametrize('content', ['', '---\n', 'kind: [unterminated\n', '- just\n- a list\n'])
def test_check_manifest_rejects(tmp_path, content):
    manifest = tmp_path / 'custom-resources.yaml'
    manifest.write_text(content)

    with pytest.raises(InstallationError):
        check_manifest(manifest)


def test_check_manifest_accepts_multiple_documents(tmp_path):
    manifest = tmp_path / 'tigera-operator.yaml'
    manifest.write_text('apiVersion: v1\nkind: Namespace\n---\n---\napiVersion: v1\nkind: ServiceAccount\n')

    check_manifest(manifest)
