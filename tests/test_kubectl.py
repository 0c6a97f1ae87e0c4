import os
import sys
from unittest.mock import AsyncMock, call

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kubebridge.modules.connection import CommandRejectedError
from kubebridge.modules.kubectl import KubectlCommands, KubernetesService


@pytest.fixture
def commands():
    return KubectlCommands()


@pytest.fixture
def mock_manager():
    manager = AsyncMock()
    manager.run_structured = AsyncMock(return_value={"items": []})
    return manager


@pytest.fixture
def k8s(mock_manager):
    return KubernetesService(mock_manager)


class TestCommandBuilding:
    def test_list_resources(self, commands):
        assert commands.list_resources("namespaces") == "kubectl get namespaces -o json"
        assert commands.list_resources("pods", "kube-system") == "kubectl get pods -n kube-system -o json"

    def test_get_resource(self, commands):
        assert (
            commands.get_resource("pod", "web-7d9f.abc", "default")
            == "kubectl get pod web-7d9f.abc -n default -o json"
        )

    def test_logs(self, commands):
        assert commands.logs("web-1", "default") == "kubectl logs web-1 -n default --tail=100"
        assert (
            commands.logs("web-1", "default", tail=5, container="nginx", previous=True)
            == "kubectl logs web-1 -n default --tail=5 -c nginx --previous"
        )

    def test_scale(self, commands):
        assert (
            commands.scale("api", "prod", 3)
            == "kubectl scale deployment api -n prod --replicas=3"
        )

    @pytest.mark.parametrize(
        "namespace",
        ["", "Default", "ns;rm -rf /", "$(whoami)", "-n", "a" * 64, "team_a"],
    )
    def test_rejects_bad_namespaces(self, commands, namespace):
        with pytest.raises(CommandRejectedError):
            commands.list_resources("pods", namespace)

    @pytest.mark.parametrize("name", ["", "web 1", "web`id`", "../etc", "web-", "a" * 254])
    def test_rejects_bad_names(self, commands, name):
        with pytest.raises(CommandRejectedError):
            commands.get_resource("pod", name, "default")

    def test_rejects_bad_tail(self, commands):
        with pytest.raises(CommandRejectedError):
            commands.logs("web-1", "default", tail=-1)

    def test_rejects_negative_replicas(self, commands):
        with pytest.raises(CommandRejectedError):
            commands.scale("api", "prod", -1)


class TestFreeForm:
    def test_strips_kubectl_prefix(self, commands):
        assert commands.free_form("kubectl get pods -A") == "kubectl get pods -A"
        assert commands.free_form("get pods -A") == "kubectl get pods -A"

    def test_arguments_are_requoted(self, commands):
        rendered = commands.free_form("get pods -l 'app=web server'")

        assert rendered == "kubectl get pods -l 'app=web server'"

    @pytest.mark.parametrize(
        "command",
        [
            "delete pod web-1",
            "exec -it web-1 -- sh",
            "port-forward svc/web 8080:80",
            "EDIT deployment web",
            "-n default delete pod web-1",
            "--namespace=default delete deployment api",
            "-n kube-system exec -it coredns -- sh",
            "kubectl -ndefault --request-timeout 5s delete pod web-1",
        ],
    )
    def test_denied_verbs(self, commands, command):
        with pytest.raises(CommandRejectedError, match="not allowed"):
            commands.free_form(command)

    def test_leading_namespace_flag_is_accepted(self, commands):
        assert commands.free_form("-n default get pods") == "kubectl -n default get pods"

    @pytest.mark.parametrize("command", ["--all-namespaces get pods", "-A delete pod web-1", "-n"])
    def test_rejects_unknown_leading_options(self, commands, command):
        with pytest.raises(CommandRejectedError):
            commands.free_form(command)

    @pytest.mark.parametrize(
        "command",
        [
            "get pods --token=abc",
            "get pods --kubeconfig /etc/other",
            "get pods --server=https://evil",
            "get pods -s https://attacker:6443",
            "get pods -shttps://attacker:6443",
            "get secrets --as system:admin",
            "get secrets --as-group=system:masters",
            "get pods --context other",
            "get pods --cluster=other",
            "get pods --user admin",
        ],
    )
    def test_forbidden_flags(self, commands, command):
        with pytest.raises(CommandRejectedError, match="Forbidden flag"):
            commands.free_form(command)

    @pytest.mark.parametrize(
        "command",
        [
            "get pods; rm -rf /",
            "get pods && whoami",
            "get pods | sh",
            "get pods `id`",
            "get pods $(id)",
            "get pods > /tmp/out",
        ],
    )
    def test_forbidden_patterns(self, commands, command):
        with pytest.raises(CommandRejectedError, match="Forbidden pattern"):
            commands.free_form(command)

    def test_rejects_empty_and_unparsable(self, commands):
        with pytest.raises(CommandRejectedError):
            commands.free_form("kubectl")
        with pytest.raises(CommandRejectedError):
            commands.free_form("get pods 'unterminated")

    def test_rejects_too_many_arguments(self, commands):
        with pytest.raises(CommandRejectedError, match="Too many arguments"):
            commands.free_form("get " + " ".join(["pods"] * 60))


class TestKubernetesService:
    @pytest.mark.asyncio
    async def test_query_connects_first(self, k8s, mock_manager):
        data = await k8s.list_pods("prod-east", "default")

        assert data == {"items": []}
        mock_manager.connect.assert_awaited_once_with("prod-east")
        mock_manager.run_structured.assert_awaited_once_with(
            "prod-east", "kubectl get pods -n default -o json"
        )

    @pytest.mark.asyncio
    async def test_resource_listings(self, k8s, mock_manager):
        await k8s.list_namespaces("c1")
        await k8s.list_deployments("c1", "ns")
        await k8s.list_services("c1", "ns")
        await k8s.list_configmaps("c1", "ns")
        await k8s.list_secrets("c1", "ns")
        await k8s.list_service_accounts("c1", "ns")

        assert mock_manager.run_structured.await_args_list == [
            call("c1", "kubectl get namespaces -o json"),
            call("c1", "kubectl get deployments -n ns -o json"),
            call("c1", "kubectl get services -n ns -o json"),
            call("c1", "kubectl get configmaps -n ns -o json"),
            call("c1", "kubectl get secrets -n ns -o json"),
            call("c1", "kubectl get serviceaccounts -n ns -o json"),
        ]

    @pytest.mark.asyncio
    async def test_pod_and_logs(self, k8s, mock_manager):
        mock_manager.run_structured = AsyncMock(return_value={"raw": "line 1\nline 2"})

        logs = await k8s.get_pod_logs("c1", "default", "web-1", tail=2)
        await k8s.get_pod("c1", "default", "web-1")

        assert logs == {"raw": "line 1\nline 2"}
        assert mock_manager.run_structured.await_args_list[0] == call(
            "c1", "kubectl logs web-1 -n default --tail=2"
        )
        assert mock_manager.run_structured.await_args_list[1] == call(
            "c1", "kubectl get pod web-1 -n default -o json"
        )

    @pytest.mark.asyncio
    async def test_scale_deployment(self, k8s, mock_manager):
        await k8s.scale_deployment("c1", "prod", "api", 0)

        mock_manager.run_structured.assert_awaited_once_with(
            "c1", "kubectl scale deployment api -n prod --replicas=0"
        )

    @pytest.mark.asyncio
    async def test_rejected_command_never_connects(self, k8s, mock_manager):
        with pytest.raises(CommandRejectedError):
            await k8s.run_kubectl("c1", "delete ns prod")

        mock_manager.connect.assert_not_awaited()
        mock_manager.run_structured.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_kubectl(self, k8s, mock_manager):
        await k8s.run_kubectl("c1", "get nodes -o wide")

        mock_manager.run_structured.assert_awaited_once_with("c1", "kubectl get nodes -o wide")
