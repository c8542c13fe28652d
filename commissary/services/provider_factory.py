from __future__ import annotations

from functools import lru_cache

from commissary.config import settings
from commissary.services.mock_catalog_provider import MockCatalogProvider
from commissary.services.zoho_catalog_provider import ZohoCatalogProvider


@lru_cache(maxsize=1)
def get_catalog_provider():
    provider = settings.catalog_provider.strip().lower()
    if provider == 'zoho':
        return ZohoCatalogProvider()
    return MockCatalogProvider()
