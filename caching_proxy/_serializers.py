import base64
import binascii
import json
import time
import typing as tp

from caching_proxy._exceptions import MalformedCachedData
from caching_proxy._headers import Headers
from caching_proxy._models import CacheEntry

FORMAT_VERSION = "1.0"

__all__ = ("BaseSerializer", "JSONSerializer")


class BaseSerializer:
    def dumps(self, entry: CacheEntry) -> tp.Union[str, bytes]:
        raise NotImplementedError()

    def loads(self, data: tp.Union[str, bytes]) -> CacheEntry:
        raise NotImplementedError()


class JSONSerializer(BaseSerializer):
    """A simple json-based serializer."""

    def dumps(self, entry: CacheEntry) -> tp.Union[str, bytes]:
        """
        Dumps a cache entry together with a small envelope of metadata.

        :param entry: The entry to serialize; its expiry is kept by the storage, not here
        :type entry: CacheEntry
        :return: Serialized entry
        :rtype: tp.Union[str, bytes]
        """
        entry_dict = {
            "status": entry.status,
            "headers": [[key, value] for key, value in entry.headers.multi_items()],
            "body": base64.b64encode(entry.body).decode("ascii"),
        }

        full_json = {
            "value": entry_dict,
            "stored_at": time.time(),
            "version": FORMAT_VERSION,
        }

        return json.dumps(full_json)

    def loads(self, data: tp.Union[str, bytes]) -> CacheEntry:
        """
        Loads a cache entry from serialized data.

        Both the enveloped format and a bare entry object are accepted.

        :param data: Serialized data
        :type data: tp.Union[str, bytes]
        :raises MalformedCachedData: When the payload is not a valid serialized entry
        :return: The cache entry
        :rtype: CacheEntry
        """
        try:
            full_json = json.loads(data)
            entry_dict = full_json["value"] if isinstance(full_json, dict) and "value" in full_json else full_json
            headers = Headers([(str(key), str(value)) for key, value in entry_dict["headers"]])
            return CacheEntry(
                status=int(entry_dict["status"]),
                headers=headers,
                body=base64.b64decode(entry_dict["body"], validate=True),
            )
        except (ValueError, KeyError, TypeError, binascii.Error) as exc:
            raise MalformedCachedData(f"Could not deserialize cached entry: {exc}") from exc
