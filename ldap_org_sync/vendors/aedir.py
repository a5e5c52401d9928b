"""AE-DIR vendor module."""

from .base import LdapVendor


class AEDirVendor(LdapVendor):
    """Decoding rules for AE-DIR, an OpenLDAP deployment with entryDN/entryUUID."""

    name = 'aedir'
    dn_attribute_name = 'entryDN'
    uuid_attribute_name = 'entryUUID'
