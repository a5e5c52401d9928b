#!/usr/bin/env python3
"""
Validation script for LDAP Org Sync application.

This script validates that all dependencies are installed correctly and
that the sync pipeline works end to end against an in-memory directory.
"""

import sys
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
    ]

    optional_dependencies = [
        ("pytest (for running the test suite)", "pytest"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    print("\n  Optional dependencies:")
    for pkg_name, import_name in optional_dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "ldap_org_sync.config",
        "ldap_org_sync.entities",
        "ldap_org_sync.ingest",
        "ldap_org_sync.ldap_client",
        "ldap_org_sync.logging_setup",
        "ldap_org_sync.main",
        "ldap_org_sync.notifications",
        "ldap_org_sync.org",
        "ldap_org_sync.records",
        "ldap_org_sync.resolve",
        "ldap_org_sync.retry",
        "ldap_org_sync.transform",
        "ldap_org_sync.vendors.active_directory",
        "ldap_org_sync.vendors.aedir",
        "ldap_org_sync.vendors.freeipa",
        "ldap_org_sync.vendors.lldap",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


class _InMemoryDirectory:
    """Just enough of LDAPClient to drive read_ldap_org."""

    def __init__(self, pages_by_dn):
        from ldap_org_sync.vendors import DefaultLdapVendor
        self.pages_by_dn = pages_by_dn
        self.vendor = DefaultLdapVendor()

    def get_vendor(self):
        return self.vendor

    def search_paginated(self, base_dn, options):
        yield from self.pages_by_dn.get(base_dn, [])


def validate_functionality():
    """Validate key functionality."""
    print("\n=== Functionality Validation ===")

    try:
        from ldap_org_sync.config import ConfigLoader
        config = ConfigLoader().load_dict({
            'ldap': {
                'target': 'ldap://localhost',
                'users': {'dn': 'ou=people,dc=example,dc=com'},
                'groups': {'dn': 'ou=groups,dc=example,dc=com'},
            }
        })
        print("  ✓ Configuration processing")

        from ldap_org_sync.records import DirectoryRecord
        from ldap_org_sync.org import read_ldap_org
        directory = _InMemoryDirectory({
            'ou=people,dc=example,dc=com': [[
                DirectoryRecord.build('uid=alice,ou=people,dc=example,dc=com', {'uid': 'alice'}),
            ]],
            'ou=groups,dc=example,dc=com': [[
                DirectoryRecord.build('cn=eng,ou=groups,dc=example,dc=com', {
                    'cn': 'eng', 'member': 'uid=alice,ou=people,dc=example,dc=com'}),
            ]],
        })
        org = read_ldap_org(directory, config['ldap']['users'], config['ldap']['groups'])
        if org['users'][0]['spec']['memberOf'] != ['group:default/eng']:
            print("  ✗ Relation resolution returned unexpected memberships")
            return False
        print("  ✓ Ingestion and relation resolution")

        from ldap_org_sync.vendors import detect_vendor
        root = DirectoryRecord.build('', {'forestFunctionality': '7'})
        print(f"  ✓ Vendor detection ({detect_vendor(root).name})")

        from ldap_org_sync.retry import retry_connect
        retry_connect(lambda: "test", "ldap://localhost", attempts=1, wait_seconds=0)
        print("  ✓ Retry mechanism")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    import subprocess

    result = subprocess.run([sys.executable, "-m", "ldap_org_sync.main", "--help"],
                            capture_output=True, text=True)
    if result.returncode == 0:
        print("  ✓ Help command working")
        return True

    print("  ✗ Help command failed")
    return False


def main():
    """Run all validations."""
    print("LDAP Org Sync - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("✓ LDAP Org Sync is ready for use")
        print("\nNext steps:")
        print("  1. Configure your directory and queries in config.yaml (see config.example.yaml)")
        print("  2. Test with: python -m ldap_org_sync.main --health-check")
        print("  3. Test email with: python -m ldap_org_sync.main --test-email")
        print("  4. Run sync: python -m ldap_org_sync.main --output org.yaml")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
