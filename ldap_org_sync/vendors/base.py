"""
Base directory vendor interface and common decoding functionality.

A vendor describes how a family of directory servers encodes the attributes
this application reads: which attribute carries an entry's distinguished name,
which one carries its stable unique id, and how non-string values are turned
into strings. Vendor modules subclass LdapVendor and override only what their
server does differently.
"""

import base64
import logging
from typing import List, Optional

from ldap_org_sync.records import DirectoryRecord

logger = logging.getLogger(__name__)


class VendorDetectionError(Exception):
    """Raised when the directory vendor cannot be determined or loaded."""
    pass


# Leading bytes of the image formats directories commonly store in photo attributes
IMAGE_SIGNATURES = {
    b'\xff\xd8\xff': 'image/jpeg',
    b'\x89PNG\r\n\x1a\n': 'image/png',
    b'GIF87a': 'image/gif',
    b'GIF89a': 'image/gif',
}


def sniff_image_type(value: bytes) -> Optional[str]:
    """Return the MIME type of an image payload, or None if it is not one we know."""
    for signature, mime_type in IMAGE_SIGNATURES.items():
        if value.startswith(signature):
            return mime_type
    return None


def to_data_url(value: bytes, mime_type: str = 'image/jpeg') -> str:
    """Render binary data as a ``data:`` URL."""
    return f"data:{mime_type};base64,{base64.b64encode(value).decode('ascii')}"


class LdapVendor:
    """
    Decoding rules for the default (OpenLDAP-like) directory.

    Class attributes:
        name: Vendor name used in logs
        dn_attribute_name: Attribute holding the entry's distinguished name
        uuid_attribute_name: Attribute holding the entry's stable unique id
        photo_attributes: Lowercased names of attributes that may hold images
        photo_policy: 'data_url' renders binary photos as data URLs, 'omit' drops them
    """

    name = 'default'
    dn_attribute_name = 'entryDN'
    uuid_attribute_name = 'entryUUID'
    photo_attributes = frozenset({'jpegphoto', 'thumbnailphoto', 'photo'})
    photo_policy = 'data_url'

    def decode_string_attribute(self, record: DirectoryRecord, attribute_name: str) -> List[str]:
        """
        Extract all values of an attribute as strings.

        Args:
            record: Directory record to read from
            attribute_name: Attribute to extract; ``dn`` yields the record's own DN

        Returns:
            Decoded values in server order; empty if the attribute is absent
        """
        if attribute_name.lower() == 'dn':
            return [record.dn] if record.dn else []

        decoded = []
        for value in record.get_raw(attribute_name):
            text = self.decode_value(attribute_name, value)
            if text is not None:
                decoded.append(text)
        return decoded

    def decode_value(self, attribute_name: str, value: bytes) -> Optional[str]:
        """
        Decode a single raw value. Returning None drops the value.

        Vendor modules override this for attributes their server stores in a
        binary encoding.
        """
        if attribute_name.lower() in self.photo_attributes:
            return self.decode_photo(value)
        return value.decode('utf-8', errors='replace')

    def decode_photo(self, value: bytes) -> Optional[str]:
        """Photos may be stored as a URL string or as image bytes."""
        mime_type = sniff_image_type(value)
        if mime_type is None:
            try:
                return value.decode('utf-8')
            except UnicodeDecodeError:
                mime_type = 'image/jpeg'

        if self.photo_policy == 'omit':
            logger.debug(f"Omitting binary photo value ({len(value)} bytes) for vendor {self.name}")
            return None
        return to_data_url(value, mime_type)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class DefaultLdapVendor(LdapVendor):
    """Vendor used when the root DSE matches no known server family."""
    pass
