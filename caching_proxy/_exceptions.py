__all__ = (
    "CachingProxyError",
    "ConfigurationError",
    "BackendUnavailable",
    "StorageError",
    "OriginError",
    "MalformedCachedData",
)


class CachingProxyError(Exception): ...


class ConfigurationError(CachingProxyError): ...


class BackendUnavailable(CachingProxyError): ...


class StorageError(CachingProxyError): ...


class OriginError(CachingProxyError): ...


class MalformedCachedData(CachingProxyError): ...
