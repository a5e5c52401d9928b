#!/usr/bin/env python3
"""
Unit tests for the LDAP client.

ldap3's Server and Connection are mocked; these tests cover connecting with
retries, paged searching, root DSE reads and vendor caching.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_org_sync.ldap_client import (
    PAGED_RESULTS_CONTROL,
    LDAPClient,
    LDAPConnectionError,
    RetrievalError,
)
from ldap_org_sync.vendors import ActiveDirectoryVendor, DefaultLdapVendor, FreeIpaVendor, VendorDetectionError

PEOPLE = 'ou=people,dc=example,dc=com'


def entry(dn, **attributes):
    return {
        'type': 'searchResEntry',
        'dn': dn,
        'raw_attributes': {name: [v.encode('utf-8') for v in values] for name, values in attributes.items()},
        'attributes': attributes,
    }


def page_result(cookie=None):
    controls = {}
    if cookie is not None:
        controls[PAGED_RESULTS_CONTROL] = {'value': {'size': 0, 'cookie': cookie}}
    return {'result': 0, 'description': 'success', 'controls': controls}


class ScriptedConnection:
    """Plays back one (response, result) pair per search call."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []
        self.response = None
        self.result = None
        self.server = None

    def search(self, **kwargs):
        self.calls.append(kwargs)
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        self.response, self.result = step
        return self.result.get('result', 0) == 0

    def unbind(self):
        return True


class TestLDAPClientInit(unittest.TestCase):
    """Test cases for reading client configuration."""

    def test_basic_configuration(self):
        client = LDAPClient({
            'target': 'ldaps://ldap.example.com:636',
            'bind': {'dn': 'cn=reader,dc=example,dc=com', 'secret': 'pw'},
        })
        self.assertTrue(client.use_ssl)
        self.assertFalse(client.start_tls)
        self.assertTrue(client.verify_ssl)
        self.assertEqual(client.bind_dn, 'cn=reader,dc=example,dc=com')
        self.assertEqual(client.page_size, 500)
        self.assertEqual(client.max_retries, 3)

    def test_advanced_configuration(self):
        client = LDAPClient({
            'target': 'ldap://ldap.example.com:389',
            'tls': {'start_tls': True, 'verify': False},
            'page_size': 100,
            'connection_timeout': 30,
        }, max_retries=5, retry_wait=10)
        self.assertFalse(client.use_ssl)
        self.assertTrue(client.start_tls)
        self.assertFalse(client.verify_ssl)
        self.assertIsNone(client.bind_dn)
        self.assertEqual(client.page_size, 100)
        self.assertEqual(client.connection_timeout, 30)
        self.assertEqual(client.max_retries, 5)
        self.assertEqual(client.retry_wait, 10)

    def test_no_tls_config_for_plain_ldap(self):
        client = LDAPClient({'target': 'ldap://ldap.example.com'})
        self.assertIsNone(client._create_tls_config())

    def test_tls_config_for_ldaps(self):
        client = LDAPClient({'target': 'ldaps://ldap.example.com', 'tls': {'verify': False}})
        self.assertIsNotNone(client._create_tls_config())


class TestLDAPClientConnect(unittest.TestCase):
    """Test cases for connecting and binding."""

    def setUp(self):
        self.config = {
            'target': 'ldap://ldap.example.com:389',
            'bind': {'dn': 'cn=reader,dc=example,dc=com', 'secret': 'pw'},
        }

    @patch('ldap_org_sync.ldap_client.Connection')
    @patch('ldap_org_sync.ldap_client.Server')
    def test_connect_and_bind(self, mock_server, mock_connection):
        mock_conn = Mock()
        mock_conn.closed = False
        mock_conn.bind.return_value = True
        mock_connection.return_value = mock_conn

        client = LDAPClient(self.config, max_retries=2, retry_wait=0)
        self.assertTrue(client.connect())

        self.assertTrue(client._connected)
        mock_conn.open.assert_called_once()
        mock_conn.bind.assert_called_once()
        _, kwargs = mock_connection.call_args
        self.assertEqual(kwargs['user'], 'cn=reader,dc=example,dc=com')

    @patch('ldap_org_sync.ldap_client.Connection')
    @patch('ldap_org_sync.ldap_client.Server')
    def test_anonymous_connect_does_not_bind(self, mock_server, mock_connection):
        mock_conn = Mock()
        mock_conn.closed = False
        mock_connection.return_value = mock_conn

        client = LDAPClient({'target': 'ldap://ldap.example.com'})
        client.connect()

        mock_conn.bind.assert_not_called()

    @patch('ldap_org_sync.retry.time.sleep')
    @patch('ldap_org_sync.ldap_client.Connection')
    @patch('ldap_org_sync.ldap_client.Server')
    def test_connect_retries_then_fails(self, mock_server, mock_connection, mock_sleep):
        mock_conn = Mock()
        mock_conn.open.side_effect = LDAPSocketOpenError('connection refused')
        mock_connection.return_value = mock_conn

        client = LDAPClient(self.config, max_retries=2, retry_wait=0)
        with self.assertRaises(LDAPConnectionError) as context:
            client.connect()

        self.assertIn('Failed to connect to LDAP after 2 attempts', str(context.exception))
        self.assertEqual(mock_conn.open.call_count, 2)
        self.assertFalse(client._connected)

    @patch('ldap_org_sync.retry.time.sleep')
    @patch('ldap_org_sync.ldap_client.Connection')
    @patch('ldap_org_sync.ldap_client.Server')
    def test_connect_arguments_override_defaults(self, mock_server, mock_connection, mock_sleep):
        mock_conn = Mock()
        mock_conn.open.side_effect = LDAPSocketOpenError('connection refused')
        mock_connection.return_value = mock_conn

        client = LDAPClient(self.config, max_retries=5, retry_wait=30)
        with self.assertRaises(LDAPConnectionError):
            client.connect(max_retries=1, retry_wait=0)

        self.assertEqual(mock_conn.open.call_count, 1)
        mock_sleep.assert_not_called()

    def test_section_error_handling_is_ignored(self):
        client = LDAPClient(dict(self.config, error_handling={'max_retries': 9}))
        self.assertEqual(client.max_retries, 3)

    @patch('ldap_org_sync.retry.time.sleep')
    @patch('ldap_org_sync.ldap_client.Connection')
    @patch('ldap_org_sync.ldap_client.Server')
    def test_bind_failure(self, mock_server, mock_connection, mock_sleep):
        mock_conn = Mock()
        mock_conn.closed = False
        mock_conn.bind.return_value = False
        mock_conn.result = {'result': 49, 'description': 'invalidCredentials'}
        mock_connection.return_value = mock_conn

        client = LDAPClient(self.config, max_retries=2, retry_wait=0)
        with self.assertRaises(LDAPConnectionError):
            client.connect()
        self.assertEqual(mock_conn.bind.call_count, 2)

    @patch('ldap_org_sync.ldap_client.Connection')
    @patch('ldap_org_sync.ldap_client.Server')
    def test_context_manager_disconnects(self, mock_server, mock_connection):
        mock_conn = Mock()
        mock_conn.closed = False
        mock_conn.bind.return_value = True
        mock_connection.return_value = mock_conn

        with LDAPClient(self.config) as client:
            client.connect()

        mock_conn.unbind.assert_called_once()
        self.assertFalse(client._connected)


class TestLDAPClientSearch(unittest.TestCase):
    """Test cases for searching."""

    def make_client(self, script, **config):
        client = LDAPClient(dict({'target': 'ldap://ldap.example.com', 'page_size': 2}, **config))
        client.connection = ScriptedConnection(script)
        client._connected = True
        return client

    def test_paged_search_follows_cookie(self):
        client = self.make_client([
            ([entry(f'uid=a,{PEOPLE}', uid=['a']), entry(f'uid=b,{PEOPLE}', uid=['b'])], page_result(b'next')),
            ([entry(f'uid=c,{PEOPLE}', uid=['c'])], page_result(b'')),
        ])

        pages = list(client.search_paginated(PEOPLE, {'scope': 'sub', 'filter': '(objectClass=person)'}))

        self.assertEqual([[r.dn for r in page] for page in pages],
                         [[f'uid=a,{PEOPLE}', f'uid=b,{PEOPLE}'], [f'uid=c,{PEOPLE}']])
        calls = client.connection.calls
        self.assertEqual(len(calls), 2)
        self.assertIsNone(calls[0]['paged_cookie'])
        self.assertEqual(calls[1]['paged_cookie'], b'next')
        self.assertEqual(calls[0]['paged_size'], 2)
        self.assertEqual(calls[0]['search_filter'], '(objectClass=person)')
        self.assertEqual(calls[0]['search_base'], PEOPLE)

    def test_paged_search_is_lazy(self):
        client = self.make_client([
            ([entry(f'uid=a,{PEOPLE}', uid=['a'])], page_result(b'next')),
            ([entry(f'uid=b,{PEOPLE}', uid=['b'])], page_result()),
        ])

        pages = client.search_paginated(PEOPLE, {})
        next(pages)
        self.assertEqual(len(client.connection.calls), 1)
        pages.close()

    def test_referrals_are_not_records(self):
        client = self.make_client([
            ([entry(f'uid=a,{PEOPLE}', uid=['a']), {'type': 'searchResRef', 'uri': ['ldap://other/']}],
             page_result()),
        ])
        records = client.search(PEOPLE, {})
        self.assertEqual([r.dn for r in records], [f'uid=a,{PEOPLE}'])
        self.assertEqual(records[0].get_raw('uid'), (b'a',))

    def test_search_error_names_base_dn(self):
        cause = LDAPException('socket closed')
        client = self.make_client([cause])

        with self.assertRaises(RetrievalError) as context:
            list(client.search_paginated(PEOPLE, {}))

        self.assertIn(f'LDAP search at DN "{PEOPLE}" failed', str(context.exception))
        self.assertIs(context.exception.__cause__, cause)
        self.assertEqual(context.exception.base_dn, PEOPLE)

    def test_failed_result_code(self):
        client = self.make_client([([], {'result': 32, 'description': 'noSuchObject'})])
        with self.assertRaises(RetrievalError) as context:
            client.search(PEOPLE, {})
        self.assertIn('noSuchObject', str(context.exception))

    def test_unsupported_scope(self):
        client = self.make_client([])
        with self.assertRaises(RetrievalError):
            client.search(PEOPLE, {'scope': 'children'})

    def test_not_connected(self):
        client = LDAPClient({'target': 'ldap://ldap.example.com'})
        with self.assertRaises(RetrievalError):
            client.search(PEOPLE, {})


class TestLDAPClientVendor(unittest.TestCase):
    """Test cases for root DSE reads and vendor caching."""

    def make_client(self, script, **config):
        client = LDAPClient(dict({'target': 'ldap://ldap.example.com'}, **config))
        client.connection = ScriptedConnection(script)
        client._connected = True
        return client

    def test_root_dse_search(self):
        client = self.make_client([([entry('', vendorName=['OpenLDAP'])], page_result())])

        root = client.get_root_dse()

        self.assertEqual(root.get_raw('vendorName'), (b'OpenLDAP',))
        call = client.connection.calls[0]
        self.assertEqual(call['search_base'], '')
        self.assertEqual(call['attributes'], ['*', '+'])

    def test_root_dse_missing(self):
        client = self.make_client([([], page_result())])
        self.assertIsNone(client.get_root_dse())

    def test_vendor_is_detected_once(self):
        client = self.make_client([([entry('', forestFunctionality=['7'])], page_result())])

        first = client.get_vendor()
        second = client.get_vendor()

        self.assertIsInstance(first, ActiveDirectoryVendor)
        self.assertIs(first, second)
        self.assertEqual(len(client.connection.calls), 1)

    def test_failed_detection_is_not_cached(self):
        client = self.make_client([
            LDAPException('timeout'),
            ([entry('', vendorName=['OpenLDAP'])], page_result()),
        ])

        with self.assertRaises(VendorDetectionError):
            client.get_vendor()
        self.assertIsInstance(client.get_vendor(), DefaultLdapVendor)
        self.assertEqual(len(client.connection.calls), 2)

    def test_disconnect_forgets_vendor(self):
        client = self.make_client([([entry('', ipaDomainLevel=['1'])], page_result())])
        client.get_vendor()

        client.disconnect()

        self.assertIsNone(client.get_connection_stats()['vendor'])

    def test_configured_vendor_skips_detection(self):
        client = self.make_client([], vendor='freeipa')
        self.assertIsInstance(client.get_vendor(), FreeIpaVendor)
        self.assertEqual(client.connection.calls, [])

    def test_connection_stats(self):
        client = self.make_client([([entry('', vendorName=['LLDAP'])], page_result())])
        client.get_vendor()
        stats = client.get_connection_stats()
        self.assertTrue(stats['connected'])
        self.assertEqual(stats['vendor'], 'lldap')
        self.assertEqual(stats['target'], 'ldap://ldap.example.com')


if __name__ == '__main__':
    unittest.main()
