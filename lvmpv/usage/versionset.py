"""Fixed facts about the cluster environment, cached in environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Protocol

from lvmpv import version as driver_version

CLUSTER_UUID_ENV = "OPENEBS_IO_USAGE_UUID"
CLUSTER_VERSION_ENV = "OPENEBS_IO_K8S_VERSION"
CLUSTER_ARCH_ENV = "OPENEBS_IO_K8S_ARCH"
OPENEBS_VERSION_ENV = "OPENEBS_IO_VERSION_TAG"
NODE_TYPE_ENV = "OPENEBS_IO_NODE_TYPE"
INSTALLER_TYPE_ENV = "OPENEBS_IO_INSTALLER_TYPE"

UUID_NAMESPACE = "default"


@dataclass
class ServerVersion:
    """Version of the cluster's API server."""

    platform: str = ""
    git_version: str = ""


class ClusterInfo(Protocol):
    """What the usage reporter needs to know about the cluster."""

    def namespace_uid(self, namespace: str) -> Optional[str]:
        """Return the UID of a namespace, or None if it has none."""

    def server_version(self) -> ServerVersion:
        """Return the API server version."""

    def os_and_kernel_version(self) -> str:
        """Return a description of the node's OS and kernel."""

    def number_of_nodes(self) -> int:
        """Return the number of nodes in the cluster."""


@dataclass
class VersionSet:
    """Environment facts reported with usage events."""

    id: str = ""
    k8s_version: str = ""
    k8s_arch: str = ""
    openebs_version: str = ""
    node_type: str = ""
    installer_type: str = ""

    def fetch(self, cluster: ClusterInfo) -> None:
        """Query the cluster and store the results in the environment."""
        self.id = cluster.namespace_uid(UUID_NAMESPACE) or ""
        os.environ[CLUSTER_UUID_ENV] = self.id

        server = cluster.server_version()
        self.k8s_arch = server.platform
        self.k8s_version = server.git_version
        os.environ[CLUSTER_ARCH_ENV] = self.k8s_arch
        os.environ[CLUSTER_VERSION_ENV] = self.k8s_version

        try:
            self.node_type = cluster.os_and_kernel_version()
        except Exception:
            self.node_type = ""
            os.environ[NODE_TYPE_ENV] = self.node_type
            raise
        os.environ[NODE_TYPE_ENV] = self.node_type

        self.openebs_version = driver_version.version_details()
        os.environ[OPENEBS_VERSION_ENV] = self.openebs_version

    def load(self, cluster: ClusterInfo, override: bool = False) -> None:
        """Fill the fields from the environment, querying the cluster first
        when nothing is cached yet or ``override`` is true.

        Errors from querying the cluster propagate.
        """
        if OPENEBS_VERSION_ENV not in os.environ or override:
            self.fetch(cluster)
        env = os.environ
        self.id = env.get(CLUSTER_UUID_ENV, "")
        self.k8s_arch = env.get(CLUSTER_ARCH_ENV, "")
        self.k8s_version = env.get(CLUSTER_VERSION_ENV, "")
        self.node_type = env.get(NODE_TYPE_ENV, "")
        self.openebs_version = env.get(OPENEBS_VERSION_ENV, "")
        self.installer_type = env.get(INSTALLER_TYPE_ENV, "")