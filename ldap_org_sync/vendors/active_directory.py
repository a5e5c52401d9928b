"""
Microsoft Active Directory vendor module.

Active Directory exposes the entry DN as ``distinguishedName`` and its stable
id as the binary ``objectGUID``. Security identifiers (``objectSid``) are
binary as well and are rendered in their ``S-1-...`` string form.
"""

import logging
import struct
import uuid
from typing import Optional

from .base import LdapVendor

logger = logging.getLogger(__name__)


def format_guid(value: bytes) -> str:
    """
    Format a binary objectGUID.

    The first three GUID fields are stored little-endian, the rest as-is.
    """
    return str(uuid.UUID(bytes_le=value))


def format_sid(value: bytes) -> str:
    """
    Format a binary security identifier.

    Byte 0 is the revision, byte 1 the sub-authority count, bytes 2-7 the
    big-endian identifier authority, followed by little-endian 32-bit
    sub-authorities.
    """
    revision = value[0]
    sub_authority_count = value[1]
    authority = int.from_bytes(value[2:8], 'big')
    sub_authorities = struct.unpack(f'<{sub_authority_count}I', value[8:8 + 4 * sub_authority_count])
    return '-'.join(['S', str(revision), str(authority)] + [str(s) for s in sub_authorities])


class ActiveDirectoryVendor(LdapVendor):
    """Decoding rules for Microsoft Active Directory."""

    name = 'active_directory'
    dn_attribute_name = 'distinguishedName'
    uuid_attribute_name = 'objectGUID'

    def decode_value(self, attribute_name: str, value: bytes) -> Optional[str]:
        lowered = attribute_name.lower()
        # Servers fronted by proxies sometimes hand these out already formatted
        if lowered == 'objectguid' and len(value) == 16:
            return format_guid(value)
        if lowered == 'objectsid' and len(value) >= 8 and value[0] == 1:
            try:
                return format_sid(value)
            except struct.error:
                logger.warning(f"Malformed objectSid value of {len(value)} bytes, decoding as text")
        return super().decode_value(attribute_name, value)
