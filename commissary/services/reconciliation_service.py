from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from commissary.models import Item
from commissary.services.catalog_mapping import MappedItem


def external_key(mapped: MappedItem) -> str | None:
    """Identity of an external item: its SKU, or its provider id when the code was invented here."""
    if mapped.code_synthesized:
        return mapped.external_id
    return mapped.code


@dataclass(frozen=True)
class ReconciliationMatch:
    local: Item
    external: MappedItem
    matched_on: str


@dataclass(frozen=True)
class ReconciliationConflict:
    external: MappedItem
    local_codes: list[str]
    reason: str


@dataclass(frozen=True)
class DuplicateCluster:
    field: str
    value: str
    item_ids: list[int]
    codes: list[str]

    @property
    def size(self) -> int:
        return len(self.item_ids)


@dataclass
class ReconciliationReport:
    matched: list[ReconciliationMatch] = field(default_factory=list)
    local_only: list[Item] = field(default_factory=list)
    external_only: list[MappedItem] = field(default_factory=list)
    duplicates: list[DuplicateCluster] = field(default_factory=list)
    conflicts: list[ReconciliationConflict] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            'matched': len(self.matched),
            'local_only': len(self.local_only),
            'external_only': len(self.external_only),
            'duplicates': len(self.duplicates),
            'conflicts': len(self.conflicts),
        }

    def as_dict(self) -> dict:
        return {
            'counts': self.counts(),
            'matched': [
                {'code': m.local.code, 'external_key': external_key(m.external), 'matched_on': m.matched_on}
                for m in self.matched
            ],
            'local_only': [
                {'code': item.code, 'name': item.name, 'external_id': item.external_id} for item in self.local_only
            ],
            'external_only': [
                {
                    'external_key': external_key(m),
                    'external_id': m.external_id,
                    'name': m.fields.get('name'),
                    'code_synthesized': m.code_synthesized,
                }
                for m in self.external_only
            ],
            'duplicates': [duplicate_as_dict(cluster) for cluster in self.duplicates],
            'conflicts': [
                {
                    'external_key': external_key(c.external),
                    'external_id': c.external.external_id,
                    'local_codes': c.local_codes,
                    'reason': c.reason,
                }
                for c in self.conflicts
            ],
        }


def duplicate_as_dict(cluster: DuplicateCluster) -> dict:
    return {
        'field': cluster.field,
        'value': cluster.value,
        'size': cluster.size,
        'item_ids': cluster.item_ids,
        'codes': cluster.codes,
    }


def find_duplicates(local_items: Iterable[Item]) -> list[DuplicateCluster]:
    by_external_id: dict[str, list[Item]] = defaultdict(list)
    by_code: dict[str, list[Item]] = defaultdict(list)
    for item in local_items:
        if item.external_id:
            by_external_id[item.external_id].append(item)
        by_code[item.code].append(item)

    clusters: list[DuplicateCluster] = []
    for field_name, groups in (('external_id', by_external_id), ('code', by_code)):
        for value, members in groups.items():
            if len(members) < 2:
                continue
            clusters.append(
                DuplicateCluster(
                    field=field_name,
                    value=value,
                    item_ids=[m.id for m in members],
                    codes=[m.code for m in members],
                )
            )
    return clusters


def reconcile(external_items: Iterable[MappedItem], local_items: Iterable[Item]) -> ReconciliationReport:
    """Partitions both sides into matched, local-only, external-only and conflicts.

    A local item matches when its external id equals a provider id, or when its
    code equals an external identity key; that external item becomes the one
    the row is synced from. An external item that hits a local row already
    claimed by another external item, or that repeats the identity of an
    earlier unmatched one, is a conflict and must not be written. Invented
    codes never take part in code matching. Nothing is written.
    """
    externals = list(external_items)
    locals_ = list(local_items)

    by_key: dict[str, MappedItem] = {}
    by_external_id: dict[str, MappedItem] = {}
    for mapped in externals:
        key = external_key(mapped)
        if key:
            by_key.setdefault(key, mapped)
        if mapped.external_id:
            by_external_id.setdefault(mapped.external_id, mapped)

    local_by_code: dict[str, list[Item]] = defaultdict(list)
    local_by_external_id: dict[str, list[Item]] = defaultdict(list)
    for item in locals_:
        local_by_code[item.code].append(item)
        if item.external_id:
            local_by_external_id[item.external_id].append(item)

    report = ReconciliationReport()
    sources: set[int] = set()
    for item in locals_:
        external = by_external_id.get(item.external_id) if item.external_id else None
        matched_on = 'external_id'
        if external is None:
            external = by_key.get(item.code)
            matched_on = 'code'
        if external is None:
            report.local_only.append(item)
            continue
        sources.add(id(external))
        report.matched.append(ReconciliationMatch(local=item, external=external, matched_on=matched_on))

    seen_keys: set[str] = set()
    seen_external_ids: set[str] = set()
    for mapped in externals:
        if id(mapped) in sources:
            continue
        key = external_key(mapped)
        hits: list[Item] = []
        if mapped.external_id:
            hits.extend(local_by_external_id.get(mapped.external_id, []))
        if key:
            hits.extend(local_by_code.get(key, []))
        if hits:
            codes = sorted({hit.code for hit in hits})
            report.conflicts.append(
                ReconciliationConflict(
                    external=mapped,
                    local_codes=codes,
                    reason=f'{key} matches {", ".join(codes)}, already synced from another external item',
                )
            )
            continue
        if (key and key in seen_keys) or (mapped.external_id and mapped.external_id in seen_external_ids):
            report.conflicts.append(
                ReconciliationConflict(
                    external=mapped,
                    local_codes=[],
                    reason=f'{key} repeats the identity of another external item in this batch',
                )
            )
            continue
        if key:
            seen_keys.add(key)
        if mapped.external_id:
            seen_external_ids.add(mapped.external_id)
        report.external_only.append(mapped)

    report.duplicates = find_duplicates(locals_)
    return report
