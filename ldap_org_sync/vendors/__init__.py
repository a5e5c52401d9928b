"""
Directory vendor modules.

The vendor is chosen once per connection, either by inspecting the server's
root DSE (see detect_vendor) or by naming a module from this package in the
configuration (see load_vendor).
"""

import importlib
import logging
from typing import Optional

from ldap_org_sync.records import DirectoryRecord
from .base import DefaultLdapVendor, LdapVendor, VendorDetectionError
from .active_directory import ActiveDirectoryVendor
from .aedir import AEDirVendor
from .freeipa import FreeIpaVendor
from .lldap import LLDAPVendor

logger = logging.getLogger(__name__)

__all__ = [
    'LdapVendor',
    'DefaultLdapVendor',
    'ActiveDirectoryVendor',
    'FreeIpaVendor',
    'AEDirVendor',
    'LLDAPVendor',
    'VendorDetectionError',
    'detect_vendor',
    'load_vendor',
]


def _first_value(record: DirectoryRecord, attribute_name: str) -> str:
    values = record.get_raw(attribute_name)
    if not values:
        return ''
    return values[0].decode('utf-8', errors='replace')


def detect_vendor(root: Optional[DirectoryRecord]) -> LdapVendor:
    """
    Pick the vendor matching a root DSE entry.

    Args:
        root: The server's root DSE, or None if the server did not return one

    Returns:
        Vendor instance; DefaultLdapVendor when nothing matches
    """
    if root is not None:
        if _first_value(root, 'forestFunctionality'):
            return ActiveDirectoryVendor()
        if _first_value(root, 'ipaDomainLevel'):
            return FreeIpaVendor()
        if root.has_attribute('aeRoot'):
            return AEDirVendor()
        if _first_value(root, 'vendorName') == 'LLDAP':
            return LLDAPVendor()
    return DefaultLdapVendor()


def load_vendor(module_name: str) -> LdapVendor:
    """
    Load a vendor by module name, bypassing detection.

    Args:
        module_name: Module inside ldap_org_sync.vendors, e.g. 'active_directory'

    Returns:
        Instance of the LdapVendor subclass defined in that module

    Raises:
        VendorDetectionError: If the module or a vendor class in it cannot be found
    """
    full_module_name = f"ldap_org_sync.vendors.{module_name}"
    try:
        vendor_module = importlib.import_module(full_module_name)
    except ImportError as e:
        raise VendorDetectionError(f"Failed to import vendor module {module_name}: {e}") from e

    # Only consider classes defined in the module itself, not the imported base
    for attr_name in dir(vendor_module):
        attr = getattr(vendor_module, attr_name)
        if (isinstance(attr, type) and
                issubclass(attr, LdapVendor) and
                attr.__module__ == vendor_module.__name__):
            logger.debug(f"Loaded vendor {attr.__name__} from {full_module_name}")
            return attr()

    raise VendorDetectionError(f"No LdapVendor subclass found in module {module_name}")
