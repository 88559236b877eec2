"""HTTP access to the directory backend."""

from .client import (
    ApiClient,
    ApiClientError,
    ApiRequest,
    ApiResponse,
    RequestCacheOptions,
    RetryPolicy,
    build_cache_key
)
from .data_source import (
    DataSourceError,
    DirectoryDataSource,
    SupabaseDataSource,
    parse_content_range
)

__all__ = [
    'ApiClient',
    'ApiClientError',
    'ApiRequest',
    'ApiResponse',
    'RequestCacheOptions',
    'RetryPolicy',
    'build_cache_key',
    'DataSourceError',
    'DirectoryDataSource',
    'SupabaseDataSource',
    'parse_content_range'
]
