"""
Tests for phase action executors against a simulated host.
"""

import json
from pathlib import Path

import pytest

from kustoboot.core.errors import ErrorKind
from kustoboot.core.models.phase import Phase
from kustoboot.core.services.bypass import BYPASS_SETTINGS
from tests.simulated_host import WritingStrategy


def _docker_run_args(env) -> list[str]:
    runs = [c for c in env.state.commands if c[:2] == ["docker", "run"]]
    assert len(runs) == 1
    return runs[0]


class TestDispatch:
    def test_bookkeeping_phase_has_no_action(self, make_env):
        with pytest.raises(ValueError):
            make_env().executors().run(Phase.REBOOT_REQUIRED)

    def test_complete_is_noop(self, make_env):
        env = make_env("complete")
        outcome = env.executors().run(Phase.COMPLETE)
        assert outcome.ok
        assert not outcome.reboot_required
        assert env.state.commands == []


class TestInstallWsl:
    def test_fresh_install(self, make_env):
        env = make_env("fresh_windows")
        outcome = env.executors().run(Phase.WSL2_INSTALL)

        assert outcome.ok
        assert outcome.reboot_required
        assert env.state.ran("dism.exe", "/online", "/enable-feature", "/featurename:Microsoft-Windows-Subsystem-Linux")
        assert env.state.ran("dism.exe", "/online", "/enable-feature", "/featurename:VirtualMachinePlatform")
        assert env.state.ran("wsl", "--install", "--no-distribution")
        assert env.state.ran("wsl", "--set-default-version", "2")

    def test_outdated_wsl_is_updated(self, make_env):
        env = make_env("complete", wsl_needs_update=True)
        outcome = env.executors().run(Phase.WSL2_INSTALL)

        assert outcome.ok
        assert outcome.reboot_required
        assert env.state.ran("wsl", "--update")
        assert not env.state.ran("dism.exe")
        assert not env.state.ran("wsl", "--install")

    def test_feature_failure(self, make_env):
        env = make_env("fresh_windows", fail={"wsl.enable_feature:VirtualMachinePlatform"})
        outcome = env.executors().run(Phase.WSL2_INSTALL)

        assert not outcome.ok
        assert outcome.error_kind == ErrorKind.INSTALL
        assert "VirtualMachinePlatform" in outcome.message
        assert outcome.hints
        assert not env.state.ran("wsl", "--install")

    def test_install_failure(self, make_env):
        env = make_env("fresh_windows", fail={"wsl.install"})
        outcome = env.executors().run(Phase.WSL2_INSTALL)
        assert outcome.error_kind == ErrorKind.INSTALL

    def test_set_default_version_is_best_effort(self, make_env):
        env = make_env("fresh_windows", fail={"wsl.set_default_version"})
        assert env.executors().run(Phase.WSL2_INSTALL).ok


class TestInstallRuntime:
    def test_windows_install(self, make_env):
        env = make_env("wsl_ready")
        outcome = env.executors().run(Phase.DOCKER_INSTALL)

        assert outcome.ok
        assert outcome.reboot_required
        assert env.state.docker_installed

        installer = env.config.downloads_dir / "DockerDesktopInstaller.exe"
        assert installer.is_file()
        assert [
            str(installer), "install", "--quiet", "--accept-license", "--backend=wsl-2", "--always-run-service",
        ] in env.state.commands

        settings = json.loads(env.host.docker_settings_path.read_text(encoding="utf-8"))
        for key, value in BYPASS_SETTINGS.items():
            assert settings[key] == value

    def test_bypass_targets_pinned_settings_file(self, make_env, tmp_path: Path):
        env = make_env("wsl_ready")
        operator_settings = tmp_path / "operator" / "settings-store.json"
        env.configure(docker_settings_file=str(operator_settings))

        assert env.executors().run(Phase.DOCKER_INSTALL).ok

        settings = json.loads(operator_settings.read_text(encoding="utf-8"))
        for key, value in BYPASS_SETTINGS.items():
            assert settings[key] == value
        assert not env.host.docker_settings_path.exists()

    def test_cached_installer_reused(self, make_env):
        env = make_env("wsl_ready")
        env.strategies = [WritingStrategy()]
        installer = env.config.downloads_dir / "DockerDesktopInstaller.exe"
        installer.parent.mkdir(parents=True, exist_ok=True)
        installer.write_bytes(b"\0" * env.config.docker_installer_min_bytes)

        assert env.executors().run(Phase.DOCKER_INSTALL).ok
        assert env.strategies[0].calls == 0

    def test_download_failure(self, make_env):
        env = make_env("wsl_ready")
        env.strategies = [WritingStrategy("bits", fails=True), WritingStrategy("streamed", fails=True)]

        outcome = env.executors().run(Phase.DOCKER_INSTALL)

        assert not outcome.ok
        assert outcome.error_kind == ErrorKind.DOWNLOAD
        assert not env.state.docker_installed
        assert not any(c[1:2] == ["install"] for c in env.state.commands)

    def test_installer_failure(self, make_env):
        env = make_env("wsl_ready", fail={"host.run_installer"})
        outcome = env.executors().run(Phase.DOCKER_INSTALL)
        assert outcome.error_kind == ErrorKind.INSTALL

    def test_linux_install(self, make_env):
        env = make_env("linux_fresh")
        outcome = env.executors().run(Phase.DOCKER_INSTALL)

        assert outcome.ok
        assert not outcome.reboot_required
        script = env.config.downloads_dir / "get-docker.sh"
        assert ["sh", str(script)] in env.state.commands
        assert not env.host.docker_settings_path.exists()


class TestWaitForDaemon:
    def test_daemon_starts(self, make_env):
        env = make_env("daemon_down", daemon_starts=True)
        outcome = env.executors().run(Phase.DOCKER_WAIT)

        assert outcome.ok
        assert ["Docker Desktop.exe"] in env.state.commands
        assert env.host.docker_settings_path.is_file()

    def test_daemon_comes_up_late(self, make_env):
        env = make_env("daemon_down")
        env.clock.at(300, lambda: setattr(env.state, "daemon_up", True))

        outcome = env.executors().run(Phase.DOCKER_WAIT)

        assert outcome.ok
        assert env.clock.now == 300

    def test_timeout_after_fifteen_minutes(self, make_env):
        env = make_env("daemon_down")
        outcome = env.executors().run(Phase.DOCKER_WAIT)

        assert not outcome.ok
        assert outcome.error_kind == ErrorKind.READINESS_TIMEOUT
        assert env.clock.now == 15 * 60
        assert set(env.clock.sleeps) == {30}
        assert "15 minutes" in outcome.message
        assert len(outcome.hints) >= 3

    def test_linux_uses_systemctl(self, make_env):
        env = make_env("linux_fresh", docker_installed=True)
        assert env.executors().run(Phase.DOCKER_WAIT).ok
        assert env.state.ran("systemctl", "start", "docker")


class TestDeployContainer:
    def test_fresh_deploy(self, make_env):
        env = make_env("complete", container="")
        outcome = env.executors().run(Phase.KUSTO_DEPLOY)

        assert outcome.ok
        assert env.state.container == "running"
        assert env.state.ran("docker", "pull", env.config.image)

        args = _docker_run_args(env)
        assert args[args.index("--name") + 1] == "kusto-emulator"
        assert args[args.index("--restart") + 1] == "unless-stopped"
        assert args[args.index("-p") + 1] == "8080:8080"
        assert args[args.index("-v") + 1] == "kusto-emulator-data:/kustodata"
        assert args[args.index("-e") + 1] == "ACCEPT_EULA=Y"
        assert args[-1] == env.config.image
        assert not env.state.ran("docker", "rm")

    def test_custom_port_and_data_path(self, make_env, tmp_path: Path):
        env = make_env("complete", container="")
        data = tmp_path / "kusto-data"
        env.configure(listen_port="8090", data_path=str(data))

        assert env.executors().run(Phase.KUSTO_DEPLOY).ok

        args = _docker_run_args(env)
        assert args[args.index("-p") + 1] == "8090:8080"
        assert args[args.index("-v") + 1] == f"{data.resolve()}:/kustodata"
        assert data.is_dir()

    def test_stale_container_replaced(self, make_env):
        env = make_env("complete", container="created")
        assert env.executors().run(Phase.KUSTO_DEPLOY).ok
        assert env.state.ran("docker", "stop", "kusto-emulator")
        assert env.state.ran("docker", "rm", "-f", "kusto-emulator")

    def test_pull_failure(self, make_env):
        env = make_env("complete", container="", fail={"docker.pull"})
        outcome = env.executors().run(Phase.KUSTO_DEPLOY)
        assert outcome.error_kind == ErrorKind.INSTALL
        assert not env.state.ran("docker", "run")

    def test_container_never_runs(self, make_env):
        env = make_env("complete", container="", container_starts=False)
        outcome = env.executors().run(Phase.KUSTO_DEPLOY)

        assert outcome.error_kind == ErrorKind.READINESS_TIMEOUT
        assert env.clock.now == env.config.container_wait_seconds
        assert env.state.ran("docker", "logs")


class TestStartContainer:
    def test_start(self, make_env):
        env = make_env("container_stopped")
        outcome = env.executors().run(Phase.KUSTO_START)

        assert outcome.ok
        assert env.state.ran("docker", "start", "kusto-emulator")
        assert env.state.container == "running"
        assert not env.state.ran("docker", "run")

    def test_start_failure(self, make_env):
        env = make_env("container_stopped", fail={"docker.start"})
        outcome = env.executors().run(Phase.KUSTO_START)
        assert not outcome.ok
        assert outcome.error_kind == ErrorKind.COMMAND
        assert outcome.to_dict()["error_kind"] == "command"
