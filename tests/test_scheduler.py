"""
Tests for the continuation bridges — Task Scheduler XML, systemd unit,
and the register / verify / unregister protocol.
"""

import xml.etree.ElementTree as ET

from kustoboot.adapters.scheduler import SystemdUnitBridge, WindowsTaskBridge
from kustoboot.adapters.scheduler.systemd import render_unit
from kustoboot.adapters.scheduler.windows import TASK_NS, build_task_xml, parse_task_status
from kustoboot.core.errors import ErrorKind
from kustoboot.core.models.continuation import ContinuationTask

NS = {"t": TASK_NS}
COMMAND = ["C:\\Python312\\python.exe", "-m", "kustoboot.main", "deploy", "--skip-reboot"]


class TestTaskXml:
    def _root(self) -> ET.Element:
        task = ContinuationTask(name="Resume", command=COMMAND, execution_time_limit_hours=2)
        return build_task_xml(task).getroot()

    def test_boot_trigger(self):
        assert self._root().find("t:Triggers/t:BootTrigger/t:Enabled", NS).text == "true"

    def test_runs_as_system_highest(self):
        principal = self._root().find("t:Principals/t:Principal", NS)
        assert principal.find("t:UserId", NS).text == "S-1-5-18"
        assert principal.find("t:RunLevel", NS).text == "HighestAvailable"

    def test_time_limit(self):
        assert self._root().find("t:Settings/t:ExecutionTimeLimit", NS).text == "PT2H"

    def test_action(self):
        exec_ = self._root().find("t:Actions/t:Exec", NS)
        assert exec_.find("t:Command", NS).text == COMMAND[0]
        assert exec_.find("t:Arguments", NS).text == "-m kustoboot.main deploy --skip-reboot"


class TestParseTaskStatus:
    def test_csv_row(self):
        assert parse_task_status('"\\KustoEmulatorDeploymentContinuation","N/A","Ready"') == "Ready"

    def test_empty(self):
        assert parse_task_status("") == ""


class TestWindowsBridge:
    def test_register_and_verify(self, make_env):
        env = make_env("complete")
        bridge = env.bridge()
        assert isinstance(bridge, WindowsTaskBridge)

        receipt = bridge.register(COMMAND)

        assert receipt.ok
        assert env.state.task_registered
        assert env.state.ran("schtasks.exe", "/Create")
        assert not (env.config.state_dir / "continuation-task.xml").exists()

    def test_replaces_existing_task(self, make_env):
        env = make_env("complete", task_registered=True)
        assert env.bridge().register(COMMAND).ok
        verbs = [c[1] for c in env.state.commands if c[0] == "schtasks.exe"]
        assert verbs.index("/Delete") < verbs.index("/Create")

    def test_unverifiable_task_fails(self, make_env):
        env = make_env("complete", task_state="Disabled")

        receipt = env.bridge().register(COMMAND)

        assert receipt.failed
        assert receipt.error_kind == ErrorKind.SCHEDULING
        assert "could not be verified" in receipt.error
        assert env.clock.now == env.config.task_verify_seconds

    def test_create_failure_is_scheduling(self, make_env):
        env = make_env("complete", fail={"schtasks.create"})
        receipt = env.bridge().register(COMMAND)
        assert receipt.failed
        assert receipt.error_kind == ErrorKind.SCHEDULING
        assert not env.state.task_registered

    def test_unregister_absent_is_noop(self, make_env):
        env = make_env("complete")
        receipt = env.bridge().unregister()
        assert receipt.status == "skipped"
        assert not env.state.ran("schtasks.exe", "/Delete")

    def test_unregister(self, make_env):
        env = make_env("complete", task_registered=True)
        assert env.bridge().unregister().ok
        assert not env.state.task_registered


class TestSystemdBridge:
    def test_render_unit(self):
        task = ContinuationTask(
            name="Resume",
            command=["/usr/bin/python3", "-m", "kustoboot.main", "deploy", "--data-path", "/srv/k d"],
            execution_time_limit_hours=2,
        )
        unit = render_unit(task)
        assert "Type=oneshot" in unit
        assert "User=root" in unit
        assert "TimeoutStartSec=2h" in unit
        assert "WantedBy=multi-user.target" in unit
        assert "ExecStart=/usr/bin/python3 -m kustoboot.main deploy --data-path '/srv/k d'" in unit

    def test_register_writes_and_enables(self, make_env):
        env = make_env("linux_fresh")
        bridge = env.bridge()
        assert isinstance(bridge, SystemdUnitBridge)

        assert bridge.register(["/usr/bin/python3", "-m", "kustoboot.main", "deploy"]).ok

        assert bridge.unit_path.is_file()
        assert bridge.unit_path.parent == env.config.systemd_unit_dir
        assert env.state.ran("systemctl", "enable", bridge.unit_name)
        assert bridge.is_registered()

    def test_unregister_removes_unit(self, make_env):
        env = make_env("linux_fresh")
        bridge = env.bridge()
        bridge.register(["/bin/true"])

        assert bridge.unregister().ok
        assert not bridge.unit_path.exists()
        assert env.state.ran("systemctl", "disable", bridge.unit_name)
        assert not bridge.is_registered()
