"""Usage events describing the driver's installation and volume activity."""

from __future__ import annotations

import logging
import os
import re
import threading
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Optional

from lvmpv.usage.ping import ping_period
from lvmpv.usage.size import to_giga_units
from lvmpv.usage.versionset import ClusterInfo, VersionSet

log = logging.getLogger(__name__)

# Tracking code of the project.
GA_CLIENT_ID = "UA-127388617-1"

# Event categories.
INSTALL_EVENT = "install"
PING = "lvm-ping"
VOLUME_PROVISION = "volume-provision"
VOLUME_DEPROVISION = "volume-deprovision"

APP_NAME = "OpenEBS"
RUNNING_STATUS = "running"
EVENT_LABEL_NODE = "nodes"
EVENT_LABEL_CAPACITY = "capacity"

REPLICA = "replica:"
DEFAULT_REPLICA_COUNT = "replica:1"
DEFAULT_CAS_TYPE = "lvm-localpv"
LOCAL_PV_REPLICA_COUNT = "1"

# Collection endpoint that events are posted to; nothing is sent when unset.
ANALYTICS_ENDPOINT_ENV = "OPENEBS_IO_ANALYTICS_ENDPOINT"

_TRACKING_ID_RE = re.compile(r"^UA-\d+-\d+$")
_SEND_TIMEOUT = 10.0


@dataclass
class Usage:
    """A single usage event together with application and client details."""

    # event
    category: str = ""
    action: str = ""
    label: str = ""
    value: int = 0
    # application
    app_version: str = ""
    app_installer_id: str = ""
    app_id: str = ""
    app_name: str = ""
    # client
    tracking_id: str = ""
    client_id: str = ""
    campaign_source: str = ""
    campaign_name: str = ""
    data_source: str = ""
    document_title: str = ""

    def set_event(self, category: str, action: str, label: str, value: int) -> "Usage":
        """Set the category, action, label and value of the event."""
        self.category = category
        self.action = action
        self.label = label
        self.value = int(value)
        return self

    @staticmethod
    def _versions(cluster: ClusterInfo, override: bool = False) -> VersionSet:
        versions = VersionSet()
        try:
            versions.load(cluster, override)
        except Exception as exc:  # the cluster may be unreachable
            log.error("%s", exc)
        return versions

    def build(self, cluster: ClusterInfo) -> "Usage":
        """Fill in the project, tracking and anonymous client identifiers."""
        versions = self._versions(cluster)
        self.app_id = APP_NAME
        self.tracking_id = GA_CLIENT_ID
        self.client_id = versions.id
        self.campaign_source = versions.installer_type
        return self

    def with_application(self, cluster: ClusterInfo) -> "Usage":
        """Add cluster and driver details for events other than installs."""
        versions = self._versions(cluster)
        self.app_version = versions.openebs_version
        self.app_name = versions.k8s_arch
        self.app_installer_id = versions.k8s_version
        self.data_source = versions.node_type
        return self

    def set_volume_capacity(self, size: str) -> "Usage":
        """Set the event value to the volume size in whole gigabytes (0 if unparsable)."""
        try:
            self.value = to_giga_units(size)
        except ValueError:
            self.value = 0
        return self

    def set_volume_type(self, vol_type: str, method: str) -> "Usage":
        """Set the storage engine name, defaulting it for provision events."""
        if method == VOLUME_PROVISION and vol_type == "":
            self.app_name = DEFAULT_CAS_TYPE
        else:
            self.app_name = vol_type
        return self

    def set_replica_count(self, count: str, method: str) -> "Usage":
        """Set the event action to the replica count of the volume."""
        if method == VOLUME_PROVISION and count == "":
            self.action = DEFAULT_REPLICA_COUNT
        else:
            self.action = REPLICA + count
        return self

    def install_builder(self, override: bool, cluster: ClusterInfo) -> "Usage":
        """Turn this into an install event carrying the cluster size."""
        try:
            cluster_size = int(cluster.number_of_nodes())
        except Exception as exc:
            log.error("%s", exc)
            cluster_size = 0
        versions = self._versions(cluster, override)
        self.app_version = versions.openebs_version
        self.app_name = versions.k8s_arch
        self.app_installer_id = versions.k8s_version
        self.data_source = versions.node_type
        self.document_title = versions.id
        self.app_id = APP_NAME
        return self.set_event(INSTALL_EVENT, RUNNING_STATUS, EVENT_LABEL_NODE, cluster_size)

    def payload(self) -> dict[str, str]:
        """Return the measurement parameters of this event hit."""
        params = {
            "v": "1",
            "tid": self.tracking_id,
            "cid": self.client_id,
            "t": "event",
            "cs": self.campaign_source,
            "cc": self.client_id,
            "cn": self.campaign_name,
            "aid": self.app_id,
            "av": self.app_version,
            "ds": self.data_source,
            "an": self.app_name,
            "aiid": self.app_installer_id,
            "dt": self.document_title,
            "ec": self.category,
            "ea": self.action,
            "el": self.label,
        }
        result = {key: value for key, value in params.items() if value}
        result["ev"] = str(self.value)
        return result

    def send(self) -> Optional[threading.Thread]:
        """Post the event in the background.

        Returns the sending thread, or None when the tracking ID is invalid
        or no endpoint is configured.
        """
        if not _TRACKING_ID_RE.match(self.tracking_id):
            return None
        endpoint = os.environ.get(ANALYTICS_ENDPOINT_ENV, "")
        if not endpoint:
            return None
        body = urllib.parse.urlencode(self.payload()).encode()
        thread = threading.Thread(target=_post, args=(endpoint, body), daemon=True)
        thread.start()
        return thread


def _post(endpoint: str, body: bytes) -> None:
    request = urllib.request.Request(endpoint, data=body, method="POST")
    try:
        with urllib.request.urlopen(request, timeout=_SEND_TIMEOUT) as response:
            response.read()
    except (urllib.error.URLError, OSError) as exc:
        log.error("%s", exc)


def ping_check(cluster: ClusterInfo, stop: Optional[threading.Event] = None) -> int:
    """Send a ping event every ping period until ``stop`` is set.

    Returns the number of pings sent.
    """
    stop = stop if stop is not None else threading.Event()
    usage = Usage()
    period = ping_period().total_seconds()
    sent = 0
    while not stop.wait(period):
        usage.build(cluster)
        usage.install_builder(True, cluster)
        usage.category = PING
        usage.send()
        sent += 1
    return sent