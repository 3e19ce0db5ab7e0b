import pytest

from kubeprep.modules.provision.errors import ConfigurationError, PrivilegeError, ResourceError
from kubeprep.modules.provision.models import NodeConfig, NodeRole
from kubeprep.modules.provision.preflight import (
    IP_FORWARD_LINE,
    SYSCTL_CONF,
    PreflightValidator,
    comment_swap_entries,
    ensure_ip_forward_line,
)

NODE = NodeConfig(hostname='node-a', role=NodeRole.WORKER)


def _meminfo(host, gib):
    host.write_text('/proc/meminfo', f'MemTotal:        {gib * 1024 * 1024} kB\n')


def test_preflight_prepares_host(host, runner):
    PreflightValidator(host, runner).run(NODE)

    assert host.current_hostname() == 'node-a'
    assert runner.ran('swapoff', '-a')
    assert '#/swap.img none swap sw 0 0' in host.read_text('/etc/fstab')
    assert host.read_text(SYSCTL_CONF) == IP_FORWARD_LINE + '\n'
    assert host.ip_forward_enabled()


def test_non_root_aborts_before_any_mutation(host, runner):
    host.privileged = False

    with pytest.raises(PrivilegeError):
        PreflightValidator(host, runner).run(NODE)

    assert runner.calls == []
    assert host.current_hostname() == 'localhost'
    assert not host.exists(SYSCTL_CONF)


@pytest.mark.parametrize('cpus,memory', [(1, 8), (4, 1), (1, 1)])
def test_insufficient_resources_abort_before_mutation(host, runner, cpus, memory):
    host.cpus = cpus
    _meminfo(host, memory)
    fstab_before = host.read_text('/etc/fstab')

    with pytest.raises(ResourceError):
        PreflightValidator(host, runner).run(NODE)

    assert runner.calls == []
    assert host.current_hostname() == 'localhost'
    assert host.read_text('/etc/fstab') == fstab_before
    assert not host.exists(SYSCTL_CONF)


def test_minimum_resources_are_accepted(host, runner):
    host.cpus = 2
    _meminfo(host, 2)

    PreflightValidator(host, runner).check_resources()


def test_memory_is_floored_to_whole_gib(host):
    host.write_text('/proc/meminfo', 'MemTotal:        2015112 kB\n')
    assert host.memory_gib() == 1


def test_hostname_already_set_is_not_changed(host, runner):
    host.write_text('/etc/hostname', 'node-a\n')

    PreflightValidator(host, runner).set_hostname('node-a')

    assert not runner.ran('hostnamectl')


def test_swapoff_skipped_when_no_swap_active(host, runner):
    host.write_text('/proc/swaps', 'Filename\tType\tSize\tUsed\tPriority\n')

    PreflightValidator(host, runner).disable_swap()

    assert not runner.ran('swapoff')


def test_ip_forwarding_is_idempotent(host, runner):
    validator = PreflightValidator(host, runner)
    validator.enable_ip_forwarding()
    validator.enable_ip_forwarding()

    lines = host.read_text(SYSCTL_CONF).splitlines()
    assert lines.count(IP_FORWARD_LINE) == 1
    assert host.ip_forward_enabled()


def test_ip_forwarding_keeps_unrelated_settings(host, runner):
    host.write_text(SYSCTL_CONF, 'net.bridge.bridge-nf-call-iptables = 1\nnet.ipv4.ip_forward = 0\n')

    PreflightValidator(host, runner).enable_ip_forwarding()

    assert host.read_text(SYSCTL_CONF) == (
        'net.bridge.bridge-nf-call-iptables = 1\n' + IP_FORWARD_LINE + '\n'
    )


def test_ip_forwarding_not_applied_by_kernel(host, runner):
    runner.on(['sysctl', '--system'], 0)

    with pytest.raises(ConfigurationError):
        PreflightValidator(host, runner).enable_ip_forwarding()


def test_comment_swap_entries_is_idempotent():
    fstab = (
        '# /etc/fstab\n'
        'UUID=abcd / ext4 defaults 0 1\n'
        '/dev/sda2 none swap sw 0 0\n'
        '#/swapfile none swap sw 0 0\n'
    )
    once = comment_swap_entries(fstab)

    assert '#/dev/sda2 none swap sw 0 0\n' in once
    assert 'UUID=abcd / ext4 defaults 0 1\n' in once
    assert '##' not in once
    assert comment_swap_entries(once) == once


def test_ensure_ip_forward_line_replaces_disabled_entry():
    assert ensure_ip_forward_line('net.ipv4.ip_forward=0\n') == IP_FORWARD_LINE + '\n'
    assert ensure_ip_forward_line('') == IP_FORWARD_LINE + '\n'
