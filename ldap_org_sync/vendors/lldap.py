"""LLDAP vendor module."""

from .base import LdapVendor


class LLDAPVendor(LdapVendor):
    """Decoding rules for LLDAP, which names its stable id attribute ``uuid``."""

    name = 'lldap'
    dn_attribute_name = 'dn'
    uuid_attribute_name = 'uuid'
