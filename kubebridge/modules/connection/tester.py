"""Try a cluster configuration without saving anything.

Backs the "test before save" and "test while editing" flows: the kubeconfig
is installed into a throwaway directory on the bastion, checked with a
read-only kubectl call and removed again. The cluster store is never touched.
"""

import logging
import uuid

from kubebridge.modules.api.models import ClusterConfig, TestResult

from .errors import KubeBridgeError
from .provisioner import RemoteProvisioner
from .ssh import SSHConnector

logger = logging.getLogger(__name__)

TEST_DIR_PREFIX = "/tmp/kubebridge-test-"
TEST_VERIFY_COMMAND = "kubectl version --client --output=json"


class ConnectionTester:
    """Ephemeral connect-and-provision check for candidate configurations."""

    def __init__(
        self,
        connector: SSHConnector,
        provisioner: RemoteProvisioner,
        timeout: float = 15.0,
    ):
        self.connector = connector
        self.provisioner = provisioner
        self.timeout = timeout

    async def test(self, candidate: ClusterConfig) -> TestResult:
        """
        Connect with ``candidate`` and install its kubeconfig in a scratch location.

        Never raises; failures come back as ``success=False``.
        """
        label = f"test:{candidate.name}"
        try:
            channel = await self.connector.open(
                candidate.ssh_config, timeout=self.timeout, label=label
            )
        except KubeBridgeError as e:
            logger.error(f"Test SSH connection failed for {candidate.name}: {e}")
            return TestResult(success=False, message=f"SSH connection failed: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error testing {candidate.name}")
            return TestResult(success=False, message=f"SSH connection failed: {e}")

        logger.info(f"Test SSH connection successful to {candidate.name}")
        # uuid keeps concurrent tests (even from other processes) apart
        scratch_dir = f"{TEST_DIR_PREFIX}{uuid.uuid4().hex}"
        try:
            await self.provisioner.provision(
                channel,
                candidate.remote_config,
                config_path=f"{scratch_dir}/config",
                verify_command=TEST_VERIFY_COMMAND,
                backup=False,
            )
        except KubeBridgeError as e:
            return TestResult(success=False, message=f"Kubeconfig test failed: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error testing kubeconfig for {candidate.name}")
            return TestResult(success=False, message=f"Kubeconfig test failed: {e}")
        finally:
            if not channel.is_closed:
                await self.provisioner.cleanup(channel, scratch_dir)
            channel.close()

        logger.info(f"Kubeconfig test completed successfully for {candidate.name}")
        return TestResult(success=True, message="Connection and kubeconfig test successful")
