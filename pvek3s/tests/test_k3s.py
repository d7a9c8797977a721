import pytest

from pvek3s.errors import Pvek3sError, ReadinessTimeout
from pvek3s.modules import k3s


def test_worker_install_command():
    assert k3s.worker_install_command("192.168.1.100", "ABC", "worker-1.k8s") == (
        "curl -sfL https://get.k3s.io | K3S_URL=https://192.168.1.100:6443 K3S_TOKEN=ABC "
        "sh -s - --node-name worker-1.k8s"
    )


def test_control_install_command_disables_traefik():
    command = k3s.control_install_command("control.k8s")
    assert command.startswith("curl -sfL https://get.k3s.io | sh -s - ")
    assert "--disable traefik" in command
    assert "--write-kubeconfig-mode 644" in command


def test_token_is_read_from_control(host, pve):
    host.add_container(100, "control.k8s", "running", files={k3s.NODE_TOKEN_PATH})
    assert k3s.get_k3s_token(pve, 100) == "K10secret::server:abc"


def test_missing_token_is_an_error(host, pve):
    host.add_container(100, "control.k8s", "running")
    with pytest.raises(Pvek3sError):
        k3s.get_k3s_token(pve, 100)


def test_wait_for_node_ready(host, pve):
    host.add_container(100, "control.k8s", "running", files={k3s.K3S_BIN})
    k3s.wait_for_node_ready(pve, 100, "control.k8s", timeout=5, interval=0)


def test_wait_for_node_ready_times_out(host, pve):
    host.add_container(100, "control.k8s", "running", files={k3s.K3S_BIN})
    with pytest.raises(ReadinessTimeout):
        k3s.wait_for_node_ready(pve, 100, "worker-1.k8s", timeout=0, interval=0)


def test_best_effort_swallows_timeouts():
    def never_ready():
        raise ReadinessTimeout("node", 0)

    assert k3s.best_effort("wait", never_ready) is False
    assert k3s.best_effort("noop", lambda: None) is True


def test_install_helm_skips_when_present(host, pve):
    host.add_container(100, "control.k8s", "running", commands={"helm"})
    k3s.install_helm(pve, 100)
    assert not any("get-helm-3" in c[-1] for c in host.calls)


def test_kubeconfig_points_at_control_ip(host, pve):
    host.add_container(100, "control.k8s", "running", files={k3s.KUBECONFIG_PATH})
    assert k3s.get_kubeconfig(pve, 100, "192.168.1.100") == "server: https://192.168.1.100:6443\n"
