from __future__ import annotations

import io
import unittest
from decimal import Decimal
from unittest.mock import patch
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qs, urlparse

from support import FakeResponse, zoho_page

from commissary.errors import UpstreamAuthError, UpstreamError
from commissary.services.zoho_catalog_provider import ZohoCatalogProvider, parse_external_item


def _http_error(code: int, body: bytes = b'{}') -> HTTPError:
    return HTTPError('https://zoho.test/inventory/v1/items', code, 'error', {}, io.BytesIO(body))


def _query(request) -> dict:
    return {key: values[0] for key, values in parse_qs(urlparse(request.full_url).query).items()}


class ZohoCatalogProviderTests(unittest.TestCase):
    def _provider(self, **overrides) -> ZohoCatalogProvider:
        options = {
            'access_token': 'token-123',
            'organization_id': 'org-9',
            'base_url': 'https://zoho.test/',
            'max_retries': 2,
            'retry_backoff_seconds': 0.1,
            'deadline_seconds': 60,
        }
        options.update(overrides)
        return ZohoCatalogProvider(**options)

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_fetches_until_short_page(self, urlopen_mock) -> None:
        urlopen_mock.side_effect = [zoho_page(0, 200), zoho_page(200, 50)]

        result = self._provider().fetch_all()

        self.assertEqual(len(result.items), 250)
        self.assertEqual(result.pages, 2)
        self.assertEqual(result.skipped, 0)
        self.assertEqual(urlopen_mock.call_count, 2)
        first_request = urlopen_mock.call_args_list[0].args[0]
        second_request = urlopen_mock.call_args_list[1].args[0]
        self.assertEqual(_query(first_request), {'page': '1', 'per_page': '200', 'organization_id': 'org-9'})
        self.assertEqual(_query(second_request)['page'], '2')
        self.assertTrue(first_request.full_url.startswith('https://zoho.test/inventory/v1/items?'))
        self.assertEqual(first_request.get_header('Authorization'), 'Zoho-oauthtoken token-123')

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_exact_full_page_then_empty_page(self, urlopen_mock) -> None:
        urlopen_mock.side_effect = [zoho_page(0, 200), zoho_page(200, 0)]

        result = self._provider().fetch_all()

        self.assertEqual(len(result.items), 200)
        self.assertEqual(result.pages, 2)

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_auth_failure_aborts_without_retry(self, urlopen_mock) -> None:
        urlopen_mock.side_effect = _http_error(401, b'{"code":14,"message":"Invalid OAuth token"}')

        with self.assertRaises(UpstreamAuthError):
            self._provider().fetch_all()
        self.assertEqual(urlopen_mock.call_count, 1)

    def test_missing_token_is_an_auth_failure(self) -> None:
        with patch('commissary.services.zoho_catalog_provider.settings.zoho_access_token', None):
            with self.assertRaises(UpstreamAuthError):
                ZohoCatalogProvider()

    @patch('commissary.services.zoho_catalog_provider.time.sleep')
    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_transient_failures_are_retried_with_backoff(self, urlopen_mock, sleep_mock) -> None:
        urlopen_mock.side_effect = [_http_error(503), URLError('reset'), zoho_page(0, 3)]

        result = self._provider().fetch_all()

        self.assertEqual(len(result.items), 3)
        self.assertEqual(urlopen_mock.call_count, 3)
        self.assertEqual([c.args[0] for c in sleep_mock.call_args_list], [0.1, 0.2])

    @patch('commissary.services.zoho_catalog_provider.time.sleep')
    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_retries_are_bounded(self, urlopen_mock, sleep_mock) -> None:
        urlopen_mock.side_effect = URLError('down')

        with self.assertRaises(UpstreamError):
            self._provider().fetch_all()
        self.assertEqual(urlopen_mock.call_count, 3)
        self.assertEqual(sleep_mock.call_count, 2)

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_client_errors_are_not_retried(self, urlopen_mock) -> None:
        urlopen_mock.side_effect = _http_error(400)

        with self.assertRaises(UpstreamError) as ctx:
            self._provider().fetch_all()
        self.assertNotIsInstance(ctx.exception, UpstreamAuthError)
        self.assertEqual(urlopen_mock.call_count, 1)

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_error_code_in_body_is_upstream_failure(self, urlopen_mock) -> None:
        urlopen_mock.return_value = FakeResponse({'code': 57, 'message': 'not authorized'})

        with self.assertRaises(UpstreamError):
            self._provider().fetch_all()

    @patch('commissary.services.zoho_catalog_provider.time.monotonic')
    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_deadline_stops_the_page_loop(self, urlopen_mock, monotonic_mock) -> None:
        clock = iter([0.0, 1.0, 120.0])
        monotonic_mock.side_effect = lambda: next(clock, 120.0)
        urlopen_mock.side_effect = [zoho_page(0, 2), zoho_page(2, 2)]

        with self.assertRaises(UpstreamError):
            self._provider(page_size=2).fetch_all()
        self.assertEqual(urlopen_mock.call_count, 1)

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_malformed_items_are_skipped_and_counted(self, urlopen_mock) -> None:
        urlopen_mock.return_value = FakeResponse(
            {
                'code': 0,
                'items': [
                    {'item_id': 'ZI-1', 'sku': 'A', 'name': 'Good', 'rate': '1.5'},
                    'not-an-object',
                    {'name': 'No identity'},
                    {'item_id': 'ZI-3', 'sku': 'C', 'name': 'Bad rate', 'rate': 'abc'},
                ],
            }
        )

        result = self._provider().fetch_all()

        self.assertEqual([item.sku for item in result.items], ['A'])
        self.assertEqual(result.skipped, 3)
        self.assertEqual(len(result.skipped_reasons), 3)

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_non_finite_numbers_are_skipped(self, urlopen_mock) -> None:
        urlopen_mock.return_value = FakeResponse(
            {
                'code': 0,
                'items': [
                    {'item_id': 'ZI-1', 'sku': 'A', 'name': 'Good', 'stock_on_hand': '4'},
                    {'item_id': 'ZI-2', 'sku': 'B', 'name': 'Bad stock', 'stock_on_hand': 'NaN'},
                    {'item_id': 'ZI-3', 'sku': 'C', 'name': 'Bad rate', 'rate': 'Infinity'},
                ],
            }
        )

        result = self._provider().fetch_all()

        self.assertEqual([item.sku for item in result.items], ['A'])
        self.assertEqual(result.skipped, 2)
        self.assertIn('stock_on_hand', result.skipped_reasons[0])

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_undecodable_body_is_upstream_failure(self, urlopen_mock) -> None:
        urlopen_mock.return_value = FakeResponse(b'\xff\xfe{"items": []}')

        with self.assertRaises(UpstreamError):
            self._provider().fetch_all()
        self.assertEqual(urlopen_mock.call_count, 1)

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_invalid_json_is_upstream_failure(self, urlopen_mock) -> None:
        urlopen_mock.return_value = FakeResponse(b'<html>gateway</html>')

        with self.assertRaises(UpstreamError):
            self._provider().fetch_all()

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_array_body_is_upstream_failure(self, urlopen_mock) -> None:
        urlopen_mock.return_value = FakeResponse([{'item_id': 'ZI-1'}])

        with self.assertRaises(UpstreamError) as ctx:
            self._provider().fetch_all()
        self.assertIn('list', str(ctx.exception))

    @patch('commissary.services.zoho_catalog_provider.urlopen')
    def test_page_size_is_capped(self, urlopen_mock) -> None:
        urlopen_mock.return_value = zoho_page(0, 1)

        self._provider(page_size=500).fetch_all()

        self.assertEqual(_query(urlopen_mock.call_args.args[0])['per_page'], '200')

    def test_parse_prefers_stock_on_hand_then_available(self) -> None:
        item = parse_external_item(
            {'item_id': 'ZI-1', 'name': 'X', 'available_stock': '7', 'category_name': 'Dairy', 'vendor_id': 88}
        )

        self.assertEqual(item.stock_on_hand, Decimal('7'))
        self.assertIsNone(item.sku)
        self.assertEqual(item.category, 'Dairy')
        self.assertEqual(item.vendor_id, '88')


if __name__ == '__main__':
    unittest.main()
