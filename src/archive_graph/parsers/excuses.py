"""
Testing-migration excuses (``excuses.yaml``) and binNMU scheduling.

Only the fields needed to decide whether a source upload must be rebuilt on
the buildds before it can migrate are modelled, plus the ``blocked-by``
dependencies used for migration-blocker reports.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

import yaml

from archive_graph.models.package import PackageRecord

logger = logging.getLogger(__name__)

EXCUSES_URL = "https://release.debian.org/britney/excuses.yaml"
BUILDD_SIGNER_SUFFIX = "@buildd.debian.org"


class Verdict(Enum):
    PASS = "PASS"
    PASS_HINTED = "PASS_HINTED"
    REJECTED_NEEDS_APPROVAL = "REJECTED_NEEDS_APPROVAL"
    REJECTED_PERMANENTLY = "REJECTED_PERMANENTLY"
    REJECTED_TEMPORARILY = "REJECTED_TEMPORARILY"
    REJECTED_CANNOT_DETERMINE_IF_PERMANENT = "REJECTED_CANNOT_DETERMINE_IF_PERMANENT"


@dataclass
class AgeInfo:
    age_requirement: int
    current_age: int
    verdict: Verdict


@dataclass
class BuiltOnBuildd:
    signed_by: dict[str, str | None]
    verdict: Verdict


@dataclass
class PolicyInfo:
    age: AgeInfo | None = None
    builtonbuildd: BuiltOnBuildd | None = None
    extras: dict[str, Verdict] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyInfo":
        info = cls()
        for name, policy in data.items():
            if not isinstance(policy, dict) or "verdict" not in policy:
                continue
            verdict = Verdict(policy["verdict"])
            if name == "age":
                info.age = AgeInfo(
                    age_requirement=int(policy.get("age-requirement", 0)),
                    current_age=int(policy.get("current-age", 0)),
                    verdict=verdict,
                )
            elif name == "builtonbuildd":
                info.builtonbuildd = BuiltOnBuildd(
                    signed_by=dict(policy.get("signed-by") or {}),
                    verdict=verdict,
                )
            else:
                info.extras[name] = verdict
        return info


@dataclass
class ExcusesItem:
    item_name: str
    source: str
    new_version: str
    old_version: str
    is_candidate: bool = False
    maintainer: str | None = None
    component: str | None = None
    invalidated_by_other_package: bool = False
    missing_builds: list[str] | None = None
    policy_info: PolicyInfo | None = None
    blocked_by: list[str] = field(default_factory=list)
    excuses: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ExcusesItem":
        missing = data.get("missing-builds")
        policy = data.get("policy_info")
        dependencies = data.get("dependencies") or {}
        return cls(
            item_name=str(data["item-name"]),
            source=str(data["source"]),
            new_version=str(data["new-version"]),
            old_version=str(data["old-version"]),
            is_candidate=bool(data.get("is-candidate", False)),
            maintainer=data.get("maintainer"),
            component=data.get("component"),
            invalidated_by_other_package=bool(data.get("invalidated-by-other-package", False)),
            missing_builds=list(missing.get("on-architectures", [])) if missing else None,
            policy_info=PolicyInfo.from_dict(policy) if policy else None,
            blocked_by=[str(item) for item in dependencies.get("blocked-by", [])],
            excuses=[str(line) for line in data.get("excuses", [])],
        )


@dataclass
class Excuses:
    generated_date: datetime.datetime | None
    sources: list[ExcusesItem]


def load_excuses(stream) -> Excuses:
    """Load excuses from YAML text or a readable stream."""
    data = yaml.safe_load(stream) or {}
    generated = data.get("generated-date")
    if isinstance(generated, str):
        generated = datetime.datetime.fromisoformat(generated)
    items = []
    for entry in data.get("sources", []):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping excuses item that is not a mapping: {entry!r}")
            continue
        try:
            items.append(ExcusesItem.from_dict(entry))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed excuses item {entry.get('item-name', '?')}: {e}")
    logger.info(f"Loaded {len(items)} excuses items")
    return Excuses(generated_date=generated, sources=items)


def needs_binnmu(policy_info: PolicyInfo) -> bool:
    """True if a rebuild on the buildds is the only thing holding the item back."""
    built = policy_info.builtonbuildd
    if built is None or built.verdict is Verdict.PASS:
        return False
    age = policy_info.age
    if age is not None:
        required = age.age_requirement
        if age.current_age < max(0, min(required // 2, required - 1)):
            # too young
            return False
    # if the others do not pass, it would not migrate even if rebuilt
    return all(verdict is Verdict.PASS for verdict in policy_info.extras.values())


@dataclass(frozen=True)
class BinNMURequest:
    source: str
    version: str
    architectures: tuple[str, ...]


def binnmu_requests(excuses: Excuses) -> list[BinNMURequest]:
    """Select the excuses that a binNMU would unblock."""
    requests = []
    for item in excuses.sources:
        if item.new_version == "-":
            # removal
            continue
        if item.new_version == item.old_version:
            # already a binNMU
            continue
        if item.item_name.endswith("_pu"):
            continue
        if item.component not in (None, "main"):
            continue
        if item.invalidated_by_other_package or item.missing_builds is not None:
            continue
        if item.policy_info is None or not needs_binnmu(item.policy_info):
            continue

        archs = sorted(
            arch
            for arch, signer in item.policy_info.builtonbuildd.signed_by.items()
            if not (signer or "").endswith(BUILDD_SIGNER_SUFFIX)
        )
        if "all" in archs:
            # arch:all packages cannot be binNMUed
            continue
        requests.append(BinNMURequest(item.source, item.new_version, tuple(archs)))
    return requests


def ma_same_sources(records: Iterable[PackageRecord]) -> frozenset[str]:
    """Source packages building at least one Multi-Arch: same binary."""
    return frozenset(
        record.source_name for record in records if not record.is_source and record.multi_arch == "same"
    )


def format_nmu(request: BinNMURequest, suite: str, ma_same: frozenset[str] = frozenset()) -> str:
    """Render a request in wanna-build ``nmu`` syntax."""
    # MA: same binaries must stay in sync on every architecture
    archs = "ANY" if request.source in ma_same else " ".join(request.architectures)
    return f'nmu {request.source}_{request.version} . {archs} . {suite} . -m "Rebuild on buildd"'


def migration_blockers(excuses: Excuses) -> dict[str, list[str]]:
    """Map each excuses item to the items blocking its migration."""
    return {item.item_name: list(item.blocked_by) for item in excuses.sources if item.blocked_by}
