"""Shared fakes for unit tests: scripted transport, fake clock, XML builders."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any
from xml.etree import ElementTree

import pytest

from cumulus.providers.cloudstack.catalog import ProductCache
from cumulus.providers.cloudstack.client import CloudStackClient
from cumulus.providers.cloudstack.config import CloudStackContext
from cumulus.providers.cloudstack.mappings import MappingOverrides
from cumulus.types.protocols import DataCenter, Document, Region

ENDPOINT = "https://cloud.test/client/api"

type Reply = str | Exception | Callable[[dict[str, str]], str]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Clock that only moves when slept on."""

    def __init__(self, start: float = 0.0) -> None:
        self.time = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.time += seconds


class ScriptedTransport:
    """Transport answering each action from a queue of replies.

    Replies are consumed in order; the last one repeats. An exception reply
    is raised, a callable reply is called with the request params.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, str]]] = []
        self._replies: dict[str, list[Reply]] = {}

    def reply(self, action: str, *replies: Reply) -> ScriptedTransport:
        self._replies.setdefault(action, []).extend(replies)
        return self

    def invoke(self, action: str, params: Mapping[str, str] | None = None) -> Document:
        params = dict(params or {})
        self.calls.append((action, params))
        queue = self._replies.get(action)
        if not queue:
            raise AssertionError(f"Unexpected action {action} {params}")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(params)
        return ElementTree.fromstring(reply)

    def params_for(self, action: str) -> list[dict[str, str]]:
        return [params for name, params in self.calls if name == action]


class FakeZones:
    """RegionDirectory and CapabilityQueries backed by plain dicts."""

    def __init__(
        self,
        zones: Mapping[str, list[str]] | None = None,
        *,
        network_zones: frozenset[str] = frozenset(),
        sg_zones: frozenset[str] = frozenset(),
    ) -> None:
        self.zones = dict(zones) if zones is not None else {"zone-1": ["zone-1"]}
        self.network_zones = network_zones
        self.sg_zones = sg_zones
        self.sg_queries: list[tuple[str, bool]] = []

    def list_regions(self) -> list[Region]:
        return [Region(id=z, name=z) for z in self.zones]

    def list_datacenters(self, region_id: str) -> list[DataCenter]:
        return [DataCenter(id=dc, name=dc, region_id=region_id) for dc in self.zones.get(region_id, [])]

    def requires_network(self, zone_id: str) -> bool:
        return zone_id in self.network_zones

    def supports_security_groups(self, zone_id: str, without_network: bool) -> bool:
        self.sg_queries.append((zone_id, without_network))
        return zone_id in self.sg_zones


class FakeNetworks:
    def __init__(self, free: list[str] | None = None, *, subscribed: bool = True) -> None:
        self.free = list(free or [])
        self.subscribed = subscribed

    def is_subscribed(self) -> bool:
        return self.subscribed

    def find_free_networks(self, zone_id: str) -> list[str]:
        return list(self.free)


class RecordingJobWaiter:
    def __init__(self) -> None:
        self.waits: list[tuple[Document, str]] = []

    def await_completion(self, document: Document, label: str) -> None:
        self.waits.append((document, label))


# ---------------------------------------------------------------------------
# XML builders
# ---------------------------------------------------------------------------


def _fields(fields: Mapping[str, Any]) -> str:
    return "".join(f"<{k}>{v}</{k}>" for k, v in fields.items() if v is not None)


def vm_node(vm_id: str | None = "vm-1", *, nics: list[dict[str, str]] | None = None, **fields: Any) -> str:
    nic_xml = "".join(f"<nic>{_fields(nic)}</nic>" for nic in nics or [])
    id_xml = f"<id>{vm_id}</id>" if vm_id is not None else ""
    return f"<virtualmachine>{id_xml}{_fields(fields)}{nic_xml}</virtualmachine>"


def vm_list(*nodes: str) -> str:
    return f'<listvirtualmachinesresponse count="{len(nodes)}">{"".join(nodes)}</listvirtualmachinesresponse>'


def offering_list(*offerings: tuple[str, str, int, int]) -> str:
    body = "".join(
        f"<serviceoffering><id>{oid}</id><name>{name}</name>"
        f"<cpunumber>{cpu}</cpunumber><memory>{ram}</memory></serviceoffering>"
        for oid, name, cpu, ram in offerings
    )
    return f"<listserviceofferingsresponse>{body}</listserviceofferingsresponse>"


def deploy_response(vm_id: str = "vm-new", *, field: str = "id", job_id: str | None = "job-1") -> str:
    job = f"<jobid>{job_id}</jobid>" if job_id else ""
    return f"<deployvirtualmachineresponse><{field}>{vm_id}</{field}>{job}</deployvirtualmachineresponse>"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def client(transport: ScriptedTransport) -> CloudStackClient:
    return CloudStackClient(transport)


@pytest.fixture
def context() -> CloudStackContext:
    return CloudStackContext(endpoint=ENDPOINT, region_id="zone-1", account_number="acct-9")


@pytest.fixture
def cache() -> ProductCache:
    return ProductCache()


@pytest.fixture
def mappings_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "mappings"
    directory.mkdir()
    return directory


@pytest.fixture
def overrides(mappings_dir: Path) -> MappingOverrides:
    return MappingOverrides(mappings_dir)
