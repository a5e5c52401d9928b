"""
LDAP Org Sync - Read users, groups and their memberships from an LDAP directory.

This package reads an organisation graph from LDAP servers of several vendors
(OpenLDAP, Active Directory, FreeIPA, AEDir, LLDAP) and publishes it as
catalog User and Group entities.
"""

__version__ = "1.0.0"
__author__ = "LDAP Sync Team"
