"""
Kubectl command construction for remote execution.

Every command is assembled as an argv list and rendered with ``shlex.join``,
so caller-supplied values always reach kubectl as single, literal arguments.
Resource identifiers are additionally held to the Kubernetes naming rules.
"""

import re
import shlex
from typing import List, Optional

from kubebridge.modules.connection.errors import CommandRejectedError

# RFC 1123 label (namespaces) and subdomain (most object names)
DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")

MAX_ARGUMENTS = 50
MAX_LOG_TAIL = 10000


class KubectlCommands:
    """Builds validated kubectl command lines."""

    # Verbs refused in free-form commands
    DENIED_VERBS = {
        "delete",
        "rm",
        "sudo",
        "chmod",
        "chown",
        "exec",
        "attach",
        "cp",
        "edit",
        "proxy",
        "port-forward",
    }

    # Never allowed anywhere in a free-form command
    FORBIDDEN_PATTERNS = {
        # Shell injection risks
        "&&",
        "||",
        ";",
        "|",
        "`",
        "$(",
        "${",
        ">",
        "<",
        "\n",
    }

    # Credential and target overrides, matched on the flag name
    FORBIDDEN_FLAGS = {
        "-s",
        "--server",
        "--token",
        "--kubeconfig",
        "--username",
        "--password",
        "--client-key",
        "--client-certificate",
        "--certificate-authority",
        "--insecure-skip-tls-verify",
        "--as",
        "--as-group",
        "--as-uid",
        "--context",
        "--cluster",
        "--user",
    }

    # Global flags accepted ahead of the verb; all of them take a value
    LEADING_FLAGS = {"-n", "--namespace", "--request-timeout", "-v", "--v"}

    @staticmethod
    def namespace(value: str) -> str:
        if not value or len(value) > 63 or not DNS_LABEL.match(value):
            raise CommandRejectedError(f"Invalid namespace: {value!r}")
        return value

    @staticmethod
    def name(value: str, kind: str = "resource") -> str:
        if not value or len(value) > 253 or not DNS_SUBDOMAIN.match(value):
            raise CommandRejectedError(f"Invalid {kind} name: {value!r}")
        return value

    @staticmethod
    def render(args: List[str]) -> str:
        return shlex.join(["kubectl", *args])

    def list_resources(self, resource: str, namespace: Optional[str] = None) -> str:
        args = ["get", resource]
        if namespace is not None:
            args += ["-n", self.namespace(namespace)]
        return self.render(args + ["-o", "json"])

    def get_resource(self, resource: str, name: str, namespace: str) -> str:
        return self.render(
            ["get", resource, self.name(name, resource), "-n", self.namespace(namespace), "-o", "json"]
        )

    def logs(
        self,
        pod: str,
        namespace: str,
        tail: int = 100,
        container: Optional[str] = None,
        previous: bool = False,
    ) -> str:
        if tail < 0 or tail > MAX_LOG_TAIL:
            raise CommandRejectedError(f"tail must be between 0 and {MAX_LOG_TAIL}")
        args = ["logs", self.name(pod, "pod"), "-n", self.namespace(namespace), f"--tail={tail}"]
        if container:
            args += ["-c", self.name(container, "container")]
        if previous:
            args.append("--previous")
        return self.render(args)

    def scale(self, deployment: str, namespace: str, replicas: int) -> str:
        if replicas < 0:
            raise CommandRejectedError("Invalid replicas count")
        return self.render(
            [
                "scale",
                "deployment",
                self.name(deployment, "deployment"),
                "-n",
                self.namespace(namespace),
                f"--replicas={replicas}",
            ]
        )

    def free_form(self, command: str) -> str:
        """
        Validate a user supplied kubectl command (without the 'kubectl' prefix).

        Raises:
            CommandRejectedError: Unparsable, empty, too long, denied verb, forbidden pattern or flag
        """
        try:
            args = shlex.split(command)
        except ValueError as exc:
            raise CommandRejectedError(f"Cannot parse command: {exc}") from exc

        if args and args[0] == "kubectl":
            args = args[1:]
        if not args:
            raise CommandRejectedError("Command is required")
        if len(args) > MAX_ARGUMENTS:
            raise CommandRejectedError(f"Too many arguments (max: {MAX_ARGUMENTS})")

        for arg in args:
            lowered = arg.lower()
            for pattern in self.FORBIDDEN_PATTERNS:
                if pattern in lowered:
                    raise CommandRejectedError(f"Forbidden pattern '{pattern.strip()}' detected")
            flag = self._flag_name(lowered)
            if flag in self.FORBIDDEN_FLAGS:
                raise CommandRejectedError(f"Forbidden flag '{flag}' detected")

        verb = self._verb(args)
        if verb in self.DENIED_VERBS:
            raise CommandRejectedError(f"Command not allowed: {verb}")

        return self.render(args)

    @staticmethod
    def _flag_name(arg: str) -> Optional[str]:
        """'--server=x' -> '--server', '-sx' -> '-s', non-flags -> None."""
        if arg.startswith("--"):
            return arg.split("=", 1)[0]
        if arg.startswith("-") and len(arg) > 1:
            return arg[:2]
        return None

    def _verb(self, args: List[str]) -> str:
        # kubectl accepts global flags before the verb ("-n prod delete pod x")
        index = 0
        while index < len(args) and args[index].startswith("-"):
            arg = args[index].lower()
            flag = self._flag_name(arg)
            if flag not in self.LEADING_FLAGS:
                raise CommandRejectedError(f"Option {args[index]} is not allowed before the command")
            attached = "=" in arg if arg.startswith("--") else len(arg) > 2
            index += 1 if attached else 2
        if index >= len(args):
            raise CommandRejectedError("Command is required")
        return args[index].lower()
