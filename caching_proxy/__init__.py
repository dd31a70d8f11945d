from caching_proxy._certificates import (
    certificate_info as certificate_info,
    generate_self_signed as generate_self_signed,
    verify_certificate as verify_certificate,
)
from caching_proxy._config import ProxyConfig as ProxyConfig
from caching_proxy._exceptions import (
    BackendUnavailable as BackendUnavailable,
    CachingProxyError as CachingProxyError,
    ConfigurationError as ConfigurationError,
    MalformedCachedData as MalformedCachedData,
    OriginError as OriginError,
    StorageError as StorageError,
)
from caching_proxy._factory import (
    StorageCreationResult as StorageCreationResult,
    available_backends as available_backends,
    backend_info as backend_info,
    create_storage as create_storage,
)
from caching_proxy._headers import (
    Headers as Headers,
    extract_ttl as extract_ttl,
    parse_cache_control as parse_cache_control,
    strip_hop_by_hop as strip_hop_by_hop,
)
from caching_proxy._invalidation import InvalidationPlanner as InvalidationPlanner
from caching_proxy._models import (
    CacheEntry as CacheEntry,
    CacheStatus as CacheStatus,
    OriginRequest as OriginRequest,
    Request as Request,
    Response as Response,
)
from caching_proxy._proxy import CachingProxy as CachingProxy, cache_key as cache_key
from caching_proxy._serializers import JSONSerializer as JSONSerializer
from caching_proxy._storages import (
    BaseStorage as BaseStorage,
    InMemoryStorage as InMemoryStorage,
    RedisStorage as RedisStorage,
    SQLiteStorage as SQLiteStorage,
)
from caching_proxy._transports import HTTPXOriginClient as HTTPXOriginClient
from caching_proxy.asgi import CachingProxyApp as CachingProxyApp

__version__ = "0.1.0"

__all__ = (
    # Proxy
    "CachingProxy",
    "CachingProxyApp",
    "cache_key",
    "InvalidationPlanner",
    # Models
    "Request",
    "Response",
    "OriginRequest",
    "CacheEntry",
    "CacheStatus",
    ## Headers
    "Headers",
    "parse_cache_control",
    "extract_ttl",
    "strip_hop_by_hop",
    # Storages
    "BaseStorage",
    "InMemoryStorage",
    "SQLiteStorage",
    "RedisStorage",
    "JSONSerializer",
    "StorageCreationResult",
    "create_storage",
    "available_backends",
    "backend_info",
    # Transports
    "HTTPXOriginClient",
    # Configuration
    "ProxyConfig",
    "generate_self_signed",
    "verify_certificate",
    "certificate_info",
    # Exceptions
    "CachingProxyError",
    "ConfigurationError",
    "BackendUnavailable",
    "StorageError",
    "OriginError",
    "MalformedCachedData",
)
