import stat

import pytest

from pvek3s.commands.cluster import resume_settings
from pvek3s.errors import PreconditionError
from pvek3s.models import NodeRole
from pvek3s.modules.phases import PhaseRunner
from pvek3s.modules.state import ClusterState, StateStore


def test_save_and_load(tmp_path, cluster):
    store = StateStore(tmp_path / "nested" / "state.yaml")
    store.record_phase(cluster, 4)

    state = store.load()
    assert state.last_phase == 4
    assert state.next_phase == 5
    assert state.ctids == {NodeRole.CONTROL: 100, NodeRole.WORKER_1: 101, NodeRole.WORKER_2: 102}
    assert state.to_config().worker2_ip == "192.168.1.102/24"


def test_password_is_not_persisted(tmp_path, cluster):
    store = StateStore(tmp_path / "state.yaml")
    store.record_phase(cluster, 1)
    assert "s3cret" not in store.path.read_text()
    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600


def test_missing_file(tmp_path):
    assert StateStore(tmp_path / "absent.yaml").load() is None


@pytest.mark.parametrize("content", ["ctids: [1", "last_phase: 9\n", "- a\n- b\n"])
def test_unreadable_file_is_ignored(tmp_path, content):
    path = tmp_path / "state.yaml"
    path.write_text(content)
    assert StateStore(path).load() is None


def test_clear(tmp_path, cluster):
    store = StateStore(tmp_path / "state.yaml")
    store.record_phase(cluster, 7)
    store.clear()
    assert not store.path.exists()
    assert ClusterState.from_config(cluster, 7).next_phase is None


def test_resume_prefers_state_record(host, pve, cluster, tmp_path):
    store = StateStore(tmp_path / "state.yaml")
    PhaseRunner(pve, cluster, store=store).run()
    store.record_phase(cluster.model_copy(update={"install_nginx": False}), 5)

    config, start = resume_settings(pve, store)
    assert start == 6
    assert config.install_nginx is False


def test_resume_probes_when_record_is_stale(host, pve, cluster, tmp_path):
    store = StateStore(tmp_path / "state.yaml")
    PhaseRunner(pve, cluster.model_copy(update={"install_helm": False, "install_nginx": False})).run()
    store.record_phase(cluster.model_copy(update={"control_ctid": 150}), 2)

    config, start = resume_settings(pve, store)
    assert start == 7
    assert config.control_ctid == 100
    assert config.worker1_ip == "192.168.1.101/24"
    assert config.gateway == "192.168.1.1"


def test_resume_without_containers(pve, tmp_path):
    with pytest.raises(PreconditionError):
        resume_settings(pve, StateStore(tmp_path / "state.yaml"))
