import pytest

from pvek3s.errors import ProvisioningError
from pvek3s.modules.k3s import K3S_BIN, NODE_TOKEN_PATH
from pvek3s.modules.lxc import K3S_LXC_CONFIG
from pvek3s.modules.phases import CleanupStack, Phase, PhaseRunner
from pvek3s.modules.state import StateStore
from pvek3s.modules.status import StatusDetector


def add_cluster_containers(host, status="stopped"):
    host.add_container(100, "control.k8s", status, ip="192.168.1.100/24")
    host.add_container(101, "worker-1.k8s", status, ip="192.168.1.101/24")
    host.add_container(102, "worker-2.k8s", status, ip="192.168.1.102/24")


@pytest.mark.parametrize("start", range(1, 8))
def test_start_phase_runs_remaining_phases_in_order(pve, cluster, start):
    runner = PhaseRunner(pve, cluster)
    ran = []
    runner.phases = [Phase(p.number, p.label, lambda n=p.number: ran.append(n)) for p in runner.phases]

    assert runner.run(start) == list(range(start, 8))
    assert ran == list(range(start, 8))


@pytest.mark.parametrize("start", [0, 8])
def test_start_phase_out_of_range(pve, cluster, start):
    with pytest.raises(ValueError):
        PhaseRunner(pve, cluster).run(start)


def test_full_run_builds_cluster(host, pve, cluster, tmp_path):
    store = StateStore(tmp_path / "state.yaml")
    assert PhaseRunner(pve, cluster, store=store).run() == [1, 2, 3, 4, 5, 6, 7]

    for ctid in (100, 101, 102):
        ct = host.containers[ctid]
        assert ct.status == "running"
        assert "/root/.oh-my-zsh" in ct.dirs
        assert K3S_BIN in ct.files
        conf = (host.conf_dir / f"{ctid}.conf").read_text().splitlines()
        assert all(line in conf for line in K3S_LXC_CONFIG)
    assert NODE_TOKEN_PATH in host.containers[100].files
    assert "helm" in host.containers[100].commands
    assert any("upgrade" in c and "nginx-ingress" in c for c in host.calls)

    assert store.load().last_phase == 7
    assert StatusDetector(pve).resume_point() is None


def test_worker_join_uses_control_token(host, pve, cluster):
    PhaseRunner(pve, cluster).run()
    joins = [c[-1] for c in host.calls_for("pct", "exec", "101") if "K3S_URL" in c[-1]]
    assert joins == [
        "curl -sfL https://get.k3s.io | K3S_URL=https://192.168.1.100:6443 "
        "K3S_TOKEN=K10secret::server:abc sh -s - --node-name worker-1.k8s"
    ]


def test_rerun_is_idempotent(host, pve, cluster):
    PhaseRunner(pve, cluster).run()
    before = len(host.calls_for("pct", "create"))
    PhaseRunner(pve, cluster, resume=True).run(1)
    assert len(host.calls_for("pct", "create")) == before
    conf = (host.conf_dir / "100.conf").read_text().splitlines()
    assert conf.count("lxc.apparmor.profile: unconfined") == 1


def test_fresh_run_failure_destroys_created_containers(host, pve, cluster):
    host.fail_when = lambda cmd: cmd[:2] == ["pct", "start"]

    with pytest.raises(ProvisioningError) as exc:
        PhaseRunner(pve, cluster).run()

    assert exc.value.phase == 3
    assert host.containers == {}
    assert [c[2] for c in host.calls_for("pct", "destroy")] == ["102", "101", "100"]


def test_failed_create_error_hides_password(host, pve, cluster):
    host.fail_when = lambda cmd: cmd[:2] == ["pct", "create"]

    with pytest.raises(ProvisioningError) as exc:
        PhaseRunner(pve, cluster).run()

    assert exc.value.phase == 1
    assert "--password [REDACTED]" in str(exc.value)
    assert "s3cret" not in str(exc.value)


def test_failed_join_error_hides_token(host, pve, cluster):
    host.fail_when = lambda cmd: "K3S_URL" in cmd[-1]

    with pytest.raises(ProvisioningError) as exc:
        PhaseRunner(pve, cluster).run()

    assert exc.value.phase == 6
    assert "K3S_TOKEN=[REDACTED]" in str(exc.value)
    assert "K10secret" not in str(exc.value)


def test_rolled_back_run_leaves_no_state_record(host, pve, cluster, tmp_path):
    store = StateStore(tmp_path / "state.yaml")
    host.fail_when = lambda cmd: cmd[:2] == ["pct", "start"]

    with pytest.raises(ProvisioningError):
        PhaseRunner(pve, cluster, store=store).run()

    assert host.containers == {}
    assert not store.path.exists()


def test_half_created_container_is_rolled_back(host, pve, cluster):
    def create_then_fail(cmd):
        # the guest exists even though pct create reports failure
        if cmd[:3] == ["pct", "create", "101"]:
            host.add_container(101, "worker-1.k8s")
            return True
        return False

    host.fail_when = create_then_fail

    with pytest.raises(ProvisioningError) as exc:
        PhaseRunner(pve, cluster).run()

    assert exc.value.phase == 1
    assert host.containers == {}
    assert [c[2] for c in host.calls_for("pct", "destroy")] == ["101", "100"]


def test_resumed_run_failure_keeps_containers(host, pve, cluster):
    add_cluster_containers(host)
    host.fail_when = lambda cmd: cmd[:2] == ["pct", "start"]

    with pytest.raises(ProvisioningError) as exc:
        PhaseRunner(pve, cluster, resume=True).run(3)

    assert exc.value.phase == 3
    assert sorted(host.containers) == [100, 101, 102]
    assert host.calls_for("pct", "destroy") == []


def test_fresh_run_only_removes_what_it_created(host, pve, cluster):
    host.add_container(100, "control.k8s", ip="192.168.1.100/24")
    host.fail_when = lambda cmd: "get.k3s.io" in cmd[-1]

    with pytest.raises(ProvisioningError) as exc:
        PhaseRunner(pve, cluster).run()

    assert exc.value.phase == 5
    assert list(host.containers) == [100]


def test_foreign_container_id_is_an_error(host, pve, cluster):
    host.add_container(101, "pihole")
    with pytest.raises(ProvisioningError) as exc:
        PhaseRunner(pve, cluster).run()
    assert exc.value.phase == 1
    assert "already used" in str(exc.value)
    assert list(host.containers) == [101]


def test_readiness_timeout_does_not_fail_run(host, pve, cluster):
    host.fail_when = lambda cmd: "kubectl" in cmd and "node" in cmd
    assert PhaseRunner(pve, cluster, ready_timeout=0).run() == [1, 2, 3, 4, 5, 6, 7]
    assert sorted(host.containers) == [100, 101, 102]


def test_helm_failure_is_not_fatal(host, pve, cluster):
    host.fail_when = lambda cmd: "get-helm-3" in cmd[-1]
    assert PhaseRunner(pve, cluster).run()[-1] == 7
    assert "helm" not in host.containers[100].commands


def test_addons_skipped_when_not_requested(host, pve, cluster):
    cluster = cluster.model_copy(update={"install_helm": False, "install_nginx": False})
    PhaseRunner(pve, cluster).run()
    assert "helm" not in host.containers[100].commands
    assert StatusDetector(pve).resume_point() == 7


def test_cleanup_stack_unwinds_newest_first():
    order = []
    stack = CleanupStack()
    stack.push("first", lambda: order.append(1))
    stack.push("broken", lambda: 1 / 0)
    stack.push("third", lambda: order.append(3))

    assert stack.unwind() == ["third", "first"]
    assert order == [3, 1]
    assert len(stack) == 0
