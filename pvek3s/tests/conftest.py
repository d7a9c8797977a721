import subprocess
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

import pytest

from pvek3s.errors import CommandError
from pvek3s.models import ClusterConfig
from pvek3s.modules.k3s import K3S_BIN, NODE_TOKEN_PATH
from pvek3s.modules.proxmox import Proxmox


@dataclass
class FakeContainer:
    hostname: str
    status: str = "stopped"
    files: Set[str] = field(default_factory=set)
    dirs: Set[str] = field(default_factory=set)
    commands: Set[str] = field(default_factory=set)


class FakeHost:
    """Stands in for pct/pvesm/pveam on a Proxmox host.

    Container configs are real files under ``conf_dir`` so LXC config edits
    can be inspected. Scripts run through ``bash -c`` are recognised by the
    installer URL they mention and leave the files the real installer would.
    """

    def __init__(self, conf_dir):
        self.conf_dir = conf_dir
        self.containers: Dict[int, FakeContainer] = {}
        self.calls: List[List[str]] = []
        self.fail_when: Optional[Callable[[List[str]], bool]] = None
        self.storages = {"rootdir": ["local-lvm"], "vztmpl": ["local"]}
        self.templates = ["debian-12-standard_12.7-1_amd64.tar.zst"]

    # -- helpers for tests ------------------------------------------------

    def add_container(self, ctid: int, hostname: str, status: str = "stopped",
                      ip: str = "192.168.1.100/24", gw: str = "192.168.1.1",
                      files=(), dirs=(), commands=()) -> FakeContainer:
        ct = FakeContainer(hostname, status, set(files), set(dirs), set(commands))
        self.containers[ctid] = ct
        (self.conf_dir / f"{ctid}.conf").write_text(
            f"arch: amd64\nhostname: {hostname}\n"
            f"net0: name=eth0,bridge=vmbr0,gw={gw},ip={ip},type=veth\n"
        )
        return ct

    def calls_for(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if c[:len(prefix)] == list(prefix)]

    # -- runner -------------------------------------------------------------

    def __call__(self, cmd, check=True, **kwargs):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        if self.fail_when is not None and self.fail_when(cmd):
            return self._result(cmd, 1, "", "injected failure", check)
        rc, out = self._dispatch(cmd, kwargs.get("input"))
        return self._result(cmd, rc, out, "" if rc == 0 else "error", check)

    @staticmethod
    def _result(cmd, rc, out, err, check):
        if check and rc != 0:
            raise CommandError(cmd, rc, err)
        return subprocess.CompletedProcess(cmd, rc, out, err)

    def _dispatch(self, cmd, stdin):
        tool = cmd[0]
        if tool == "pct":
            return self._pct(cmd[1], cmd[2:], stdin)
        if tool == "pvesh":
            return 1, ""
        if tool == "pvesm":
            names = self.storages.get(cmd[-1], [])
            return 0, "Name Type Status\n" + "".join(f"{n} dir active\n" for n in names)
        if tool == "pveam":
            if cmd[1] == "available":
                return 0, "".join(f"system {t}\n" for t in self.templates)
            return 0, ""
        if tool == "modprobe":
            return 0, ""
        return 127, ""

    def _pct(self, sub, args, stdin):
        if sub == "list":
            lines = ["VMID Status Lock Name"]
            lines += [f"{i} {c.status} {c.hostname}" for i, c in sorted(self.containers.items())]
            return 0, "\n".join(lines) + "\n"

        ctid = int(args[0])
        ct = self.containers.get(ctid)
        if sub == "create":
            opts = dict(zip(args[2::2], args[3::2]))
            ip = dict(p.split("=", 1) for p in opts["--net0"].split(","))["ip"]
            self.add_container(ctid, opts["--hostname"], ip=ip)
            return 0, ""
        if ct is None:
            return 2, ""
        if sub == "config":
            return 0, (self.conf_dir / f"{ctid}.conf").read_text()
        if sub == "status":
            return 0, f"status: {ct.status}\n"
        if sub == "start":
            ct.status = "running"
            return 0, ""
        if sub == "stop":
            ct.status = "stopped"
            return 0, ""
        if sub == "destroy":
            del self.containers[ctid]
            (self.conf_dir / f"{ctid}.conf").unlink()
            return 0, ""
        if sub == "push":
            ct.files.add(args[2])
            return 0, ""
        if sub == "exec":
            if ct.status != "running":
                return 1, ""
            return self._exec(ct, args[2:], stdin)
        return 1, ""

    def _exec(self, ct, argv, stdin):
        prog = argv[0]
        if prog == "test":
            paths = ct.dirs if argv[1] == "-d" else ct.files
            return (0 if argv[2] in paths else 1), ""
        if prog == "which":
            return (0 if argv[1] in ct.commands else 1), ""
        if prog == "cat":
            if argv[1] == NODE_TOKEN_PATH and argv[1] in ct.files:
                return 0, "K10secret::server:abc\n"
            return (0, "server: https://127.0.0.1:6443\n") if argv[1] in ct.files else (1, "")
        if prog == "tee":
            ct.files.add(argv[1])
            return 0, stdin or ""
        if prog == "kubectl":
            return self._kubectl(argv)
        if prog == "bash":
            script = argv[2]
            if "get.k3s.io" in script:
                ct.files.add(K3S_BIN)
                if "K3S_URL" not in script:
                    ct.files.update({NODE_TOKEN_PATH, "/etc/rancher/k3s/k3s.yaml"})
            if "get-helm-3" in script:
                ct.commands.add("helm")
            if "ohmyzsh" in script:
                ct.dirs.add("/root/.oh-my-zsh")
            return 0, ""
        return 0, ""

    def _kubectl(self, argv):
        registered = {c.hostname for c in self.containers.values() if K3S_BIN in c.files}
        if argv[1:3] == ["get", "node"]:
            name = argv[3]
            if name in registered:
                return 0, f"{name}   Ready   <none>   1m   v1.30.4+k3s1\n"
            return 1, ""
        return 0, "\n".join(sorted(registered))


@pytest.fixture
def host(tmp_path):
    conf_dir = tmp_path / "lxc"
    conf_dir.mkdir()
    return FakeHost(conf_dir)


@pytest.fixture
def pve(host):
    return Proxmox(runner=host, conf_dir=host.conf_dir)


@pytest.fixture
def cluster():
    return ClusterConfig(
        storage="local-lvm",
        template_storage="local",
        os_template="debian-12-standard_12.7-1_amd64.tar.zst",
        password="s3cret",
        gateway="192.168.1.1",
        control_ctid=100,
        worker1_ctid=101,
        worker2_ctid=102,
        control_ip="192.168.1.100/24",
        worker1_ip="192.168.1.101/24",
        worker2_ip="192.168.1.102/24",
    )


@pytest.fixture(autouse=True)
def fast_polling(monkeypatch):
    monkeypatch.setattr("pvek3s.utils.time.sleep", lambda _: None)
