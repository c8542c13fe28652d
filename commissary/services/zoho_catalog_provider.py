from __future__ import annotations

import json
import logging
import time
from decimal import Decimal, InvalidOperation
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from commissary.config import settings
from commissary.errors import UpstreamAuthError, UpstreamError, ValidationError
from commissary.services.catalog_provider import ExternalItem, FetchResult

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _optional_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_decimal(value, *, field: str) -> Decimal | None:
    if value is None or value == '':
        return None
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError(f'Invalid {field}: {value!r}') from exc
    if not parsed.is_finite():
        raise ValidationError(f'Invalid {field}: {value!r}')
    return parsed


def parse_external_item(raw) -> ExternalItem:
    if not isinstance(raw, dict):
        raise ValidationError('Item payload is not an object')
    item_id = _optional_text(raw.get('item_id'))
    sku = _optional_text(raw.get('sku'))
    name = _optional_text(raw.get('name'))
    if not item_id and not sku:
        raise ValidationError(f'Item {name or "<unnamed>"} has neither item_id nor sku')

    category = raw.get('category_name') or raw.get('category')
    if isinstance(category, dict):
        category = category.get('name')

    stock = raw.get('stock_on_hand')
    if stock in (None, ''):
        stock = raw.get('available_stock')
    if stock in (None, ''):
        stock = raw.get('opening_stock')

    return ExternalItem(
        external_id=item_id or '',
        sku=sku,
        name=name,
        category=_optional_text(category),
        unit=_optional_text(raw.get('unit')),
        status=_optional_text(raw.get('status')),
        description=_optional_text(raw.get('description')),
        rate=_optional_decimal(raw.get('rate'), field='rate'),
        purchase_rate=_optional_decimal(raw.get('purchase_rate'), field='purchase_rate'),
        stock_on_hand=_optional_decimal(stock, field='stock_on_hand'),
        vendor_id=_optional_text(raw.get('vendor_id')),
        vendor_name=_optional_text(raw.get('vendor_name')),
    )


class ZohoCatalogProvider:
    """Reads the item list from Zoho Inventory, one page at a time.

    The page loop ends when a page comes back short; the provider never asks
    for a total count. Auth failures abort immediately, transient failures are
    retried with exponential backoff, and the whole loop is bounded by a
    deadline.
    """

    def __init__(
        self,
        *,
        access_token: str | None = None,
        organization_id: str | None = None,
        base_url: str | None = None,
        page_size: int | None = None,
        timeout_seconds: int | None = None,
        max_retries: int | None = None,
        retry_backoff_seconds: float | None = None,
        deadline_seconds: float | None = None,
    ) -> None:
        token = access_token or settings.zoho_access_token
        if not token:
            raise UpstreamAuthError('ZOHO_ACCESS_TOKEN is required when CATALOG_PROVIDER=zoho')

        self.base_url = (base_url or settings.zoho_api_base_url).rstrip('/')
        self.organization_id = organization_id or settings.zoho_organization_id
        self.page_size = min(page_size or settings.zoho_page_size, MAX_PAGE_SIZE)
        self.timeout_seconds = timeout_seconds or settings.zoho_timeout_seconds
        self.max_retries = settings.zoho_max_retries if max_retries is None else max_retries
        self.retry_backoff_seconds = (
            settings.zoho_retry_backoff_seconds if retry_backoff_seconds is None else retry_backoff_seconds
        )
        self.deadline_seconds = deadline_seconds or settings.zoho_fetch_deadline_seconds
        self.headers = {
            'Authorization': f'Zoho-oauthtoken {token}',
            'Content-Type': 'application/json',
        }

    def _get_once(self, path: str, params: dict) -> dict:
        req = Request(
            url=f'{self.base_url}{path}?{urlencode(params)}',
            headers=self.headers,
            method='GET',
        )
        with urlopen(req, timeout=self.timeout_seconds) as response:
            return json.loads(response.read().decode('utf-8'))

    def _get(self, path: str, params: dict, *, deadline: float) -> dict:
        attempt = 0
        while True:
            if time.monotonic() > deadline:
                raise UpstreamError(f'Zoho fetch exceeded its {self.deadline_seconds}s deadline')
            try:
                parsed = self._get_once(path, params)
                break
            except HTTPError as exc:
                body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
                if exc.code == 401:
                    raise UpstreamAuthError(f'Zoho rejected the access token: {body}') from exc
                if exc.code not in RETRYABLE_STATUS or attempt >= self.max_retries:
                    raise UpstreamError(f'Zoho API error {exc.code} on {path}: {body}') from exc
                reason = f'HTTP {exc.code}'
            except (URLError, TimeoutError) as exc:
                if attempt >= self.max_retries:
                    raise UpstreamError(f'Zoho API network error on {path}: {exc}') from exc
                reason = str(exc)
            except ValueError as exc:
                # JSONDecodeError and UnicodeDecodeError both land here.
                raise UpstreamError(f'Zoho API returned an unreadable body on {path}: {exc}') from exc

            delay = self.retry_backoff_seconds * (2**attempt)
            attempt += 1
            logger.warning('Zoho request %s failed (%s), retry %s/%s in %.2fs', path, reason, attempt, self.max_retries, delay)
            time.sleep(delay)

        if not isinstance(parsed, dict):
            raise UpstreamError(f'Zoho API returned {type(parsed).__name__} instead of an object on {path}')
        if parsed.get('code') not in (None, 0):
            raise UpstreamError(f"Zoho API returned error {parsed.get('code')} on {path}: {parsed.get('message')}")
        return parsed

    def fetch_all(self) -> FetchResult:
        deadline = time.monotonic() + self.deadline_seconds
        result = FetchResult()
        page = 1
        while True:
            params: dict = {'page': page, 'per_page': self.page_size}
            if self.organization_id:
                params['organization_id'] = self.organization_id
            response = self._get('/inventory/v1/items', params, deadline=deadline)
            raw_items = response.get('items')
            if not isinstance(raw_items, list):
                raise UpstreamError(f'Zoho page {page} has no items array')

            for raw in raw_items:
                try:
                    result.items.append(parse_external_item(raw))
                except ValidationError as exc:
                    result.skipped += 1
                    result.skipped_reasons.append(f'Page {page}: {exc}')
                    logger.debug('Skipping malformed Zoho item on page %s: %s', page, exc)

            result.pages = page
            logger.info('Zoho page %s: %s items (total so far %s)', page, len(raw_items), len(result.items))
            if len(raw_items) < self.page_size:
                break
            page += 1
        return result
