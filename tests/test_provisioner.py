import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import HANG, KUBECONFIG_TEXT, encode, make_channel

from kubebridge.modules.connection import (
    CommandExecutor,
    ConfigValidationError,
    ProvisioningError,
    RemoteProvisioner,
    validate_remote_config,
)
from kubebridge.modules.connection.provisioner import (
    build_install_command,
    lint_remote_config,
    remote_parent,
    remote_path,
)


@pytest.fixture
def provisioner():
    return RemoteProvisioner(CommandExecutor(), timeout=5)


# Local validation


def test_validate_returns_decoded_text(kubeconfig_b64):
    assert validate_remote_config(kubeconfig_b64) == KUBECONFIG_TEXT


@pytest.mark.parametrize(
    "section,problem",
    [
        ("apiVersion:", "missing apiVersion"),
        ("clusters:", "missing clusters section"),
        ("users:", "missing users section"),
        ("contexts:", "missing contexts section"),
    ],
)
def test_validate_requires_sections(section, problem):
    blob = encode(KUBECONFIG_TEXT.replace(section, "removed:"))

    with pytest.raises(ConfigValidationError, match=problem):
        validate_remote_config(blob)


def test_validate_rejects_non_base64():
    with pytest.raises(ConfigValidationError, match="not valid base64"):
        validate_remote_config("apiVersion: v1 %%%")


def test_lint_flags_tab_indentation():
    warnings = lint_remote_config("clusters:\n\t- name: x\n  # fine\n")

    assert warnings == ["line 2: tab indentation"]


# Remote command composition


def test_remote_path_anchors_relative_paths_at_home():
    assert remote_path(".kube/config") == "\"$HOME\"/.kube/config"
    assert remote_path("~/.kube/config") == "\"$HOME\"/.kube/config"
    assert remote_path("/tmp/with space/config") == "'/tmp/with space/config'"


def test_remote_parent():
    assert remote_parent(".kube/config") == "\"$HOME\"/.kube"
    assert remote_parent("config") == "\"$HOME\""
    assert remote_parent("/tmp/scratch/config") == "/tmp/scratch"


def test_install_command_chains_every_step():
    command = build_install_command(KUBECONFIG_TEXT, ".kube/config")
    steps = command.split(" && ")

    assert steps[0] == "mkdir -p \"$HOME\"/.kube"
    assert steps[1].startswith("{ cp ") and steps[1].endswith("|| true; }")
    assert steps[2] == f"echo {encode(KUBECONFIG_TEXT)} | base64 -d > \"$HOME\"/.kube/config"
    assert steps[3] == "chmod 600 \"$HOME\"/.kube/config"
    assert steps[4].startswith("KUBECONFIG=\"$HOME\"/.kube/config kubectl config view")


def test_install_command_without_backup():
    command = build_install_command(KUBECONFIG_TEXT, "/tmp/t/config", "kubectl version --client", backup=False)

    assert ".backup" not in command
    assert command.endswith("KUBECONFIG=/tmp/t/config kubectl version --client")


# Provisioning


@pytest.mark.asyncio
async def test_provision_sends_one_command(provisioner, kubeconfig_b64):
    channel, conn = make_channel()

    await provisioner.provision(channel, kubeconfig_b64)

    assert len(conn.commands) == 1
    assert "base64 -d" in conn.commands[0]


@pytest.mark.asyncio
async def test_invalid_config_never_reaches_host(provisioner):
    channel, conn = make_channel()
    blob = encode(KUBECONFIG_TEXT.replace("clusters:", "nodes:"))

    with pytest.raises(ConfigValidationError, match="missing clusters section"):
        await provisioner.provision(channel, blob)

    assert conn.commands == []


@pytest.mark.asyncio
async def test_remote_failure_carries_stderr(provisioner, kubeconfig_b64):
    channel, _ = make_channel({"base64 -d": ("", "error: error loading config file\n", 1)})

    with pytest.raises(ProvisioningError) as exc_info:
        await provisioner.provision(channel, kubeconfig_b64)

    assert exc_info.value.exit_code == 1
    assert exc_info.value.stderr == "error: error loading config file"


@pytest.mark.asyncio
async def test_remote_timeout_is_a_provisioning_error(kubeconfig_b64):
    provisioner = RemoteProvisioner(CommandExecutor(), timeout=0.05)
    channel, _ = make_channel({"base64 -d": HANG})

    with pytest.raises(ProvisioningError):
        await provisioner.provision(channel, kubeconfig_b64)


@pytest.mark.asyncio
async def test_cleanup_never_raises(provisioner):
    channel, conn = make_channel({"rm -rf": ("", "permission denied", 1)})

    await provisioner.cleanup(channel, "/tmp/kubebridge-test-abc")

    assert conn.commands == ["rm -rf /tmp/kubebridge-test-abc"]

    channel.close()
    await provisioner.cleanup(channel, "/tmp/kubebridge-test-abc")
