from __future__ import annotations

import unittest
from types import SimpleNamespace

from commissary.services.catalog_mapping import MappedItem
from commissary.services.reconciliation_service import external_key, find_duplicates, reconcile


def _local(item_id: int, code: str, external_id: str | None = None):
    return SimpleNamespace(id=item_id, code=code, external_id=external_id, name=f'Local {code}')


def _external(code: str, external_id: str | None, *, synthesized: bool = False) -> MappedItem:
    return MappedItem(
        code=code,
        external_id=external_id,
        fields={'name': f'External {code}'},
        code_synthesized=synthesized,
    )


class ReconciliationServiceTests(unittest.TestCase):
    def test_partitions_are_disjoint_and_cover_both_sides(self) -> None:
        externals = [
            _external('SKU-1', 'ZI-1'),
            _external('SKU-2', 'ZI-2'),
            _external('SKU-3', 'ZI-3'),
            _external('SKU-4', 'ZI-4'),
        ]
        locals_ = [
            _local(1, 'SKU-1'),
            _local(2, 'OLD-CODE', external_id='ZI-2'),
            _local(3, 'LOCAL-ONLY'),
            _local(4, 'ZI-4'),
        ]

        report = reconcile(externals, locals_)

        matched_local = {m.local.code for m in report.matched}
        local_only = {item.code for item in report.local_only}
        matched_external = {external_key(m.external) for m in report.matched}
        external_only = {external_key(m) for m in report.external_only}
        self.assertEqual(matched_local, {'SKU-1', 'OLD-CODE'})
        self.assertEqual(local_only, {'LOCAL-ONLY', 'ZI-4'})
        self.assertFalse(matched_local & local_only)
        self.assertEqual(matched_local | local_only, {item.code for item in locals_})
        self.assertFalse(matched_external & external_only)
        self.assertEqual(matched_external | external_only, {'SKU-1', 'SKU-2', 'SKU-3', 'SKU-4'})
        self.assertEqual(report.counts(), {'matched': 2, 'local_only': 2, 'external_only': 2, 'duplicates': 0, 'conflicts': 0})

    def test_external_id_match_reported_as_such(self) -> None:
        report = reconcile([_external('SKU-2', 'ZI-2')], [_local(2, 'OLD-CODE', external_id='ZI-2')])

        self.assertEqual(report.matched[0].matched_on, 'external_id')

    def test_local_code_matches_provider_id_when_sku_missing(self) -> None:
        externals = [_external('GEN-SEA-AB12', 'ZI-9', synthesized=True)]

        report = reconcile(externals, [_local(1, 'ZI-9')])

        self.assertEqual(len(report.matched), 1)
        self.assertEqual(report.external_only, [])

    def test_synthesized_codes_never_match_by_code(self) -> None:
        externals = [_external('GEN-SEA-AB12', 'ZI-9', synthesized=True)]

        report = reconcile(externals, [_local(1, 'GEN-SEA-AB12')])

        self.assertEqual(report.matched, [])
        self.assertEqual(len(report.local_only), 1)
        self.assertEqual(len(report.external_only), 1)

    def test_synthesized_external_matches_by_external_id(self) -> None:
        externals = [_external('GEN-SEA-ZZ99', 'ZI-9', synthesized=True)]

        report = reconcile(externals, [_local(1, 'GEN-SEA-AB12', external_id='ZI-9')])

        self.assertEqual(len(report.matched), 1)

    def test_empty_inputs(self) -> None:
        report = reconcile([], [])

        self.assertEqual(report.counts(), {'matched': 0, 'local_only': 0, 'external_only': 0, 'duplicates': 0, 'conflicts': 0})

    def test_external_hitting_a_claimed_row_is_a_conflict(self) -> None:
        first = _external('B', 'X')
        second = _external('A', 'Y')

        report = reconcile([first, second], [_local(1, 'A', 'X')])

        self.assertEqual([(m.local.code, m.external) for m in report.matched], [('A', first)])
        self.assertEqual(report.external_only, [])
        self.assertEqual(len(report.conflicts), 1)
        self.assertIs(report.conflicts[0].external, second)
        self.assertEqual(report.conflicts[0].local_codes, ['A'])

    def test_repeated_sku_without_local_row_is_a_conflict(self) -> None:
        report = reconcile([_external('SKU-1', 'ZI-1'), _external('SKU-1', 'ZI-2')], [])

        self.assertEqual([m.external_id for m in report.external_only], ['ZI-1'])
        self.assertEqual([c.external.external_id for c in report.conflicts], ['ZI-2'])

    def test_repeated_sku_with_local_row_is_a_conflict(self) -> None:
        report = reconcile([_external('SKU-1', 'ZI-1'), _external('SKU-1', 'ZI-2')], [_local(1, 'SKU-1')])

        self.assertEqual(len(report.matched), 1)
        self.assertEqual(report.matched[0].external.external_id, 'ZI-1')
        self.assertEqual(report.counts()['conflicts'], 1)

    def test_two_codes_sharing_an_external_id_form_one_cluster(self) -> None:
        clusters = find_duplicates([_local(1, 'A', 'X'), _local(2, 'B', 'X'), _local(3, 'C', 'Y')])

        self.assertEqual(len(clusters), 1)
        self.assertEqual(clusters[0].field, 'external_id')
        self.assertEqual(clusters[0].value, 'X')
        self.assertEqual(clusters[0].size, 2)
        self.assertEqual(sorted(clusters[0].codes), ['A', 'B'])

    def test_duplicate_codes_are_clustered_separately(self) -> None:
        clusters = find_duplicates([_local(1, 'A'), _local(2, 'A'), _local(3, 'B', '')])

        self.assertEqual([(c.field, c.value, c.item_ids) for c in clusters], [('code', 'A', [1, 2])])

    def test_reconcile_includes_duplicates(self) -> None:
        report = reconcile([_external('A', 'X')], [_local(1, 'A', 'X'), _local(2, 'B', 'X')])

        self.assertEqual(len(report.duplicates), 1)
        self.assertEqual(len(report.matched), 2)
        self.assertEqual(report.external_only, [])


if __name__ == '__main__':
    unittest.main()
