"""Precondition checks run before anything touches the host."""

from __future__ import annotations

import logging

from kustoboot.adapters.host.system import MIN_WINDOWS_BUILD, HostAdapter
from kustoboot.core.config.settings import DeploymentConfig
from kustoboot.core.errors import PreconditionFailure

logger = logging.getLogger(__name__)

# Distribution IDs the get.docker.com convenience script installs on
CONVENIENCE_SCRIPT_DISTROS = frozenset(
    {"ubuntu", "debian", "raspbian", "centos", "fedora", "rhel", "sles"}
)


def check_preconditions(config: DeploymentConfig, host: HostAdapter) -> None:
    """Raise PreconditionFailure unless this host can run the deployment.

    Requires elevation, and either Windows at or above the first WSL2
    build, or a Linux host with the virtualization step skipped.
    """
    if not host.is_elevated():
        what = "an elevated (Administrator) prompt" if host.is_windows else "root"
        raise PreconditionFailure(
            f"The deployment must run from {what}",
            hints=[
                "Right-click the terminal and choose 'Run as administrator'"
                if host.is_windows
                else "Re-run with sudo",
            ],
        )

    if host.is_windows:
        build = host.windows_build()
        if build is None or build < MIN_WINDOWS_BUILD:
            raise PreconditionFailure(
                f"Windows build {build or 'unknown'} is too old; "
                f"WSL2 needs build {MIN_WINDOWS_BUILD} or newer",
                hints=["Install the latest Windows feature update and re-run"],
            )
        logger.debug("Windows build %s", build)
        return

    if host.system == "Linux":
        if not config.skip_virtualization_install:
            raise PreconditionFailure(
                "WSL2 can only be installed on Windows",
                hints=["On Linux, re-run with --skip-virtualization-install"],
            )
        distro_id = host.platform_info().get("distro_id", "")
        if distro_id not in CONVENIENCE_SCRIPT_DISTROS:
            logger.warning(
                "%s is not a distribution get.docker.com supports; "
                "install Docker yourself if the runtime install fails",
                distro_id or "This distribution",
            )
        return

    raise PreconditionFailure(f"Unsupported host platform: {host.system}")
