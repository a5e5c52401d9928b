"""
Raw directory records as returned by the LDAP client.

A DirectoryRecord is the immutable, vendor-neutral view of one search result
entry: its distinguished name, the raw (byte) values of every returned
attribute and, when the client supplied them, ldap3's already formatted values.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union


RawValue = Union[str, bytes]


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, bytearray):
        return bytes(value)
    return str(value).encode('utf-8')


def _as_tuple(values: Any) -> Tuple[Any, ...]:
    if values is None:
        return ()
    if isinstance(values, (str, bytes, bytearray)):
        return (values,)
    if isinstance(values, Iterable):
        return tuple(values)
    return (values,)


@dataclass(frozen=True)
class DirectoryRecord:
    """
    One directory entry, immutable once retrieved.

    Attributes:
        dn: Distinguished name of the entry as supplied by the server
        raw: Attribute name to tuple of raw byte values
        attributes: Attribute name to tuple of values formatted by the client
    """

    dn: str
    raw: Mapping[str, Tuple[bytes, ...]] = field(default_factory=dict)
    attributes: Mapping[str, Tuple[Any, ...]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'raw', MappingProxyType(dict(self.raw)))
        object.__setattr__(self, 'attributes', MappingProxyType(dict(self.attributes)))

    @classmethod
    def build(cls, dn: str, data: Mapping[str, Union[RawValue, Iterable[RawValue]]]) -> 'DirectoryRecord':
        """
        Create a record from plain attribute data.

        String values are stored UTF-8 encoded in ``raw`` and verbatim in
        ``attributes``; byte values are stored as given.
        """
        raw = {}
        attributes = {}
        for name, values in data.items():
            values = _as_tuple(values)
            raw[name] = tuple(_to_bytes(v) for v in values)
            attributes[name] = values
        return cls(dn=dn, raw=raw, attributes=attributes)

    @classmethod
    def from_ldap3(cls, item: Dict[str, Any]) -> 'DirectoryRecord':
        """Create a record from one ``searchResEntry`` item of ``Connection.response``."""
        raw_attributes = item.get('raw_attributes') or {}
        attributes = item.get('attributes') or {}
        raw = {name: tuple(_to_bytes(v) for v in _as_tuple(values))
               for name, values in raw_attributes.items()}
        formatted = {name: _as_tuple(values) for name, values in attributes.items()}
        # Attributes only present in the formatted view still need raw values
        for name, values in formatted.items():
            if name not in raw:
                raw[name] = tuple(_to_bytes(v) for v in values)
        return cls(dn=str(item.get('dn', '')), raw=raw, attributes=formatted)

    def _find_key(self, attribute_name: str) -> Optional[str]:
        if attribute_name in self.raw:
            return attribute_name
        lowered = attribute_name.lower()
        for name in self.raw:
            if name.lower() == lowered:
                return name
        return None

    def has_attribute(self, attribute_name: str) -> bool:
        """Attribute names are matched case-insensitively, as LDAP does."""
        return self._find_key(attribute_name) is not None

    def get_raw(self, attribute_name: str) -> Tuple[bytes, ...]:
        key = self._find_key(attribute_name)
        if key is None:
            return ()
        return self.raw[key]
