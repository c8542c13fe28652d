from __future__ import annotations

import unittest
from decimal import Decimal

from fastapi.testclient import TestClient
from support import StaticProvider, external_items, make_engine, make_session, raw_material, repo_for, seed_locations

from commissary.db import get_db
from commissary.dependencies import get_provider
from commissary.errors import UpstreamError
from commissary.main import app


class BrokenProvider:
    def fetch_all(self):
        raise UpstreamError('Zoho API network error on /inventory/v1/items: timed out')


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session(self.engine)
        self.locations = seed_locations(self.db)
        self.kitchen = repo_for(self.db, self.locations, 'central-kitchen')
        self.kitchen.insert('RM-TOM-001', raw_material('Roma Tomatoes', '100', price='0.850'))
        self.kitchen.insert('RM-MOZ-001', raw_material('Mozzarella', '10', price='3.000'))
        self.db.commit()
        self.provider = StaticProvider(external_items(3))

        def override_get_db():
            yield self.db

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_provider] = lambda: self.provider
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()
        self.engine.dispose()

    def test_list_items_with_pagination(self) -> None:
        response = self.client.get('/items', params={'limit': 1, 'sort_by': 'code'})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([item['code'] for item in body['items']], ['RM-MOZ-001'])
        self.assertEqual(body['pagination']['total_items'], 2)
        self.assertTrue(body['pagination']['has_next_page'])

    def test_list_items_search_and_stock_status(self) -> None:
        response = self.client.get('/items', params={'search': 'ROMA'})
        low = self.client.get('/items', params={'stock_status': 'Low Stock'})

        self.assertEqual([item['code'] for item in response.json()['items']], ['RM-TOM-001'])
        self.assertEqual([item['code'] for item in low.json()['items']], ['RM-MOZ-001'])

    def test_unknown_location_is_404(self) -> None:
        response = self.client.get('/items', params={'location': 'atlantis'})

        self.assertEqual(response.status_code, 404)

    def test_low_stock_endpoint(self) -> None:
        response = self.client.get('/items/low-stock')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['count'], 1)
        self.assertEqual(response.json()['items'][0]['stock_status'], 'Low Stock')

    def test_get_item_and_missing_item(self) -> None:
        found = self.client.get('/items/RM-TOM-001')
        missing = self.client.get('/items/RM-NOPE')

        self.assertEqual(found.status_code, 200)
        self.assertEqual(Decimal(found.json()['total_value']), Decimal('85'))
        self.assertEqual(missing.status_code, 404)

    def test_sync_endpoint_returns_counts(self) -> None:
        response = self.client.post('/items/sync', headers={'X-Actor': 'ops'})

        self.assertEqual(response.status_code, 200)
        summary = response.json()['summary']
        self.assertEqual((summary['created'], summary['updated'], summary['skipped']), (3, 0, 0))
        self.assertEqual(summary['local_only'], 2)
        self.assertEqual(self.kitchen.find_by_code('SKU-00000').created_by, 'ops')

    def test_sync_upstream_failure_is_502(self) -> None:
        self.provider = BrokenProvider()

        response = self.client.post('/items/sync')

        self.assertEqual(response.status_code, 502)
        self.assertIn('timed out', response.json()['detail'])

    def test_reconciliation_and_duplicates_endpoints(self) -> None:
        report = self.client.get('/items/reconciliation')
        duplicates = self.client.get('/items/duplicates')

        self.assertEqual(report.status_code, 200)
        self.assertEqual(report.json()['counts'], {'matched': 0, 'local_only': 2, 'external_only': 3, 'duplicates': 0, 'conflicts': 0})
        self.assertEqual(duplicates.json()['count'], 0)
        self.assertIsNone(self.kitchen.get_by_code('SKU-00000'))

    def test_import_endpoint(self) -> None:
        response = self.client.post(
            '/items/import',
            json={'rows': [{'sku': 'RM-NEW', 'item_name': 'New', 'quantity': '4'}, {'sku': '', 'item_name': 'x'}]},
        )

        self.assertEqual(response.status_code, 200)
        summary = response.json()['summary']
        self.assertEqual((summary['created'], summary['skipped']), (1, 1))
        self.assertEqual(self.kitchen.find_by_code('RM-NEW').updated_by, 'excel-import')

    def test_adjust_endpoint_rejects_overdraw(self) -> None:
        ok = self.client.post('/items/RM-MOZ-001/adjust', json={'quantity': '-4', 'reason': 'waste'})
        overdraw = self.client.post('/items/RM-MOZ-001/adjust', json={'quantity': '-40'})

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(Decimal(ok.json()['current_stock']), Decimal('6'))
        self.assertEqual(overdraw.status_code, 409)

    def test_delete_soft_deletes(self) -> None:
        response = self.client.delete('/items/RM-TOM-001')

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()['is_active'])
        listed = self.client.get('/items').json()['items']
        self.assertEqual([item['code'] for item in listed], ['RM-MOZ-001'])

    def test_transfer_all_lines_succeed(self) -> None:
        response = self.client.post(
            '/transfers',
            json={
                'from_location': 'central-kitchen',
                'to_location': 'taiba-kitchen',
                'lines': [{'item_code': 'RM-TOM-001', 'quantity': '25'}],
            },
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['transfer']['status'], 'Completed')
        self.assertEqual(body['transfer']['to_location'], 'taiba-hospital')
        self.assertEqual(Decimal(body['lines'][0]['destination_stock']), Decimal('25'))

    def test_transfer_with_failed_line(self) -> None:
        response = self.client.post(
            '/transfers',
            json={
                'from_location': 'central-kitchen',
                'to_location': 'kuwait-city',
                'lines': [
                    {'item_code': 'RM-TOM-001', 'quantity': '5'},
                    {'item_code': 'RM-MOZ-001', 'quantity': '11'},
                ],
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['transfer']['has_errors'])
        self.assertEqual((body['succeeded'], body['failed']), (1, 1))
        self.assertEqual(body['lines'][1]['status'], 'failed')
        self.assertEqual(self.kitchen.find_by_code('RM-MOZ-001').current_stock, Decimal('10'))

    def test_transfer_validation_errors(self) -> None:
        same = self.client.post(
            '/transfers',
            json={'from_location': 'central-kitchen', 'to_location': 'Central Kitchen', 'lines': [{'item_code': 'RM-TOM-001', 'quantity': '1'}]},
        )
        negative = self.client.post(
            '/transfers',
            json={'from_location': 'central-kitchen', 'to_location': 'kuwait-city', 'lines': [{'item_code': 'RM-TOM-001', 'quantity': '-1'}]},
        )

        self.assertEqual(same.status_code, 400)
        self.assertEqual(negative.status_code, 422)

    def test_pending_transfer_can_be_cancelled_once(self) -> None:
        created = self.client.post(
            '/transfers',
            json={
                'from_location': 'central-kitchen',
                'to_location': 'kuwait-city',
                'lines': [{'item_code': 'RM-TOM-001', 'quantity': '1'}],
                'execute': False,
            },
        )
        transfer_id = created.json()['transfer']['id']

        cancelled = self.client.post(f'/transfers/{transfer_id}/cancel')
        again = self.client.post(f'/transfers/{transfer_id}/execute')
        fetched = self.client.get(f'/transfers/{transfer_id}')

        self.assertEqual(created.status_code, 201)
        self.assertEqual(cancelled.json()['status'], 'Cancelled')
        self.assertEqual(again.status_code, 409)
        self.assertEqual(fetched.json()['status'], 'Cancelled')
        self.assertEqual(self.client.get('/transfers/999').status_code, 404)

    def test_locations_endpoint(self) -> None:
        response = self.client.get('/locations')

        codes = [location['code'] for location in response.json()['locations']]
        self.assertEqual(codes[0], 'central-kitchen')
        self.assertEqual(len(codes), 5)


if __name__ == '__main__':
    unittest.main()
