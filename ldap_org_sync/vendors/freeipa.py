"""
FreeIPA vendor module.

FreeIPA does not publish ``entryDN``; the DN comes from the entry itself and
the stable id from ``ipaUniqueID``.
"""

from .base import LdapVendor


class FreeIpaVendor(LdapVendor):
    """Decoding rules for FreeIPA / Red Hat IdM."""

    name = 'freeipa'
    dn_attribute_name = 'dn'
    uuid_attribute_name = 'ipaUniqueID'
    # IdM photos are large jpegPhoto blobs, not worth carrying around
    photo_policy = 'omit'
