#!/usr/bin/env python3
"""
Unit tests for the main sync orchestrator.

The directory client and the organisation reader are mocked; these tests
cover output writing, exit codes and failure notifications.
"""

import io
import os
import sys
import tempfile
import unittest
from unittest.mock import Mock, patch

import yaml

# Add parent directory to path to import ldap_org_sync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_org_sync.config import ConfigurationError
from ldap_org_sync.entities import new_group_entity, new_user_entity
from ldap_org_sync.ingest import SyncCancelledError
from ldap_org_sync.ldap_client import LDAPConnectionError, RetrievalError
from ldap_org_sync.main import SyncOrchestrator
from ldap_org_sync.transform import RecordTransformError
from ldap_org_sync.vendors import VendorDetectionError


def make_org():
    alice = new_user_entity()
    alice['metadata']['name'] = 'alice'
    alice['spec']['memberOf'] = ['group:default/eng']
    eng = new_group_entity()
    eng['metadata']['name'] = 'eng'
    return {'users': [alice], 'groups': [eng], 'processed': 2}


class TestSyncOrchestrator(unittest.TestCase):
    """Test cases for SyncOrchestrator class."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_config = {
            'ldap': {
                'target': 'ldap://ldap.example.com',
                'users': [{'dn': 'ou=people,dc=example,dc=com'}],
                'groups': [{'dn': 'ou=groups,dc=example,dc=com'}],
            },
            'logging': {'level': 'INFO'},
            'error_handling': {'max_retries': 2, 'retry_wait_seconds': 0},
            'ingest': {'max_workers': 2, 'progress_interval_seconds': 1},
            'output': {'path': None},
            'notifications': {'enable_email': False},
        }

        handle, self.output_path = tempfile.mkstemp(suffix='.yaml')
        os.close(handle)
        os.remove(self.output_path)
        self.addCleanup(lambda: os.path.exists(self.output_path) and os.remove(self.output_path))

        patchers = {
            'load_config': patch('ldap_org_sync.main.load_config', return_value=self.test_config),
            'setup_logging': patch('ldap_org_sync.main.setup_logging'),
            'client_class': patch('ldap_org_sync.main.LDAPClient'),
            'read_ldap_org': patch('ldap_org_sync.main.read_ldap_org', return_value=make_org()),
            'send_failure': patch('ldap_org_sync.main.send_failure_notification'),
            'send_success': patch('ldap_org_sync.main.send_success_summary'),
        }
        self.mocks = {}
        for name, patcher in patchers.items():
            self.mocks[name] = patcher.start()
            self.addCleanup(patcher.stop)

        self.client = Mock()
        self.client.get_vendor.return_value.name = 'default'
        self.mocks['client_class'].return_value = self.client

    def test_successful_sync_writes_groups_then_users(self):
        orchestrator = SyncOrchestrator(output_path=self.output_path)

        self.assertEqual(orchestrator.run(), 0)

        with open(self.output_path, 'r', encoding='utf-8') as f:
            documents = list(yaml.safe_load_all(f))
        self.assertEqual([(d['kind'], d['metadata']['name']) for d in documents],
                         [('Group', 'eng'), ('User', 'alice')])
        self.assertEqual(documents[1]['spec']['memberOf'], ['group:default/eng'])

        self.client.connect.assert_called_once_with(max_retries=2, retry_wait=0)
        self.client.disconnect.assert_called_once()
        self.mocks['send_success'].assert_called_once()
        self.mocks['send_failure'].assert_not_called()
        self.assertEqual(orchestrator.sync_stats['users'], 1)
        self.assertEqual(orchestrator.sync_stats['groups'], 1)
        self.assertEqual(orchestrator.sync_stats['records_processed'], 2)

    def test_reader_receives_queries_and_ingest_settings(self):
        orchestrator = SyncOrchestrator(output_path=self.output_path)
        orchestrator.run()

        args, kwargs = self.mocks['read_ldap_org'].call_args
        self.assertIs(args[0], self.client)
        self.assertEqual(args[1], self.test_config['ldap']['users'])
        self.assertEqual(args[2], self.test_config['ldap']['groups'])
        self.assertEqual(kwargs['max_workers'], 2)
        self.assertEqual(kwargs['progress_interval'], 1)
        self.assertIs(kwargs['cancel_event'], orchestrator.cancel_event)

    def test_output_path_from_config(self):
        self.test_config['output']['path'] = self.output_path
        self.assertEqual(SyncOrchestrator().run(), 0)
        self.assertTrue(os.path.exists(self.output_path))

    @patch('sys.stdout', new_callable=io.StringIO)
    def test_stdout_when_no_output_path(self, mock_stdout):
        self.assertEqual(SyncOrchestrator().run(), 0)
        documents = list(yaml.safe_load_all(mock_stdout.getvalue()))
        self.assertEqual(len(documents), 2)

    def test_configuration_error(self):
        self.mocks['load_config'].side_effect = ConfigurationError('Missing ldap section')

        self.assertEqual(SyncOrchestrator(output_path=self.output_path).run(), 2)

        self.mocks['client_class'].assert_not_called()
        self.mocks['send_failure'].assert_not_called()

    def test_connection_error(self):
        self.client.connect.side_effect = LDAPConnectionError('Failed to connect to LDAP after 2 attempts')

        self.assertEqual(SyncOrchestrator(output_path=self.output_path).run(), 3)

        self.mocks['send_failure'].assert_called_once()
        self.assertFalse(os.path.exists(self.output_path))

    def test_vendor_detection_error(self):
        self.mocks['read_ldap_org'].side_effect = VendorDetectionError('Failed to read root DSE')
        self.assertEqual(SyncOrchestrator(output_path=self.output_path).run(), 3)

    def test_transform_error_writes_nothing(self):
        self.mocks['read_ldap_org'].side_effect = RecordTransformError(
            'User', 'uid', 'cn=robot,ou=people,dc=example,dc=com')

        self.assertEqual(SyncOrchestrator(output_path=self.output_path).run(), 4)

        self.assertFalse(os.path.exists(self.output_path))
        title, message, _, info = self.mocks['send_failure'].call_args.args
        self.assertEqual(title, 'Invalid Directory Entry')
        self.assertIn("missing 'uid' attribute", message)
        self.assertEqual(info['dn'], 'cn=robot,ou=people,dc=example,dc=com')
        self.client.disconnect.assert_called_once()

    def test_retrieval_error(self):
        self.mocks['read_ldap_org'].side_effect = RetrievalError('ou=people,dc=example,dc=com', 'timeout')
        self.assertEqual(SyncOrchestrator(output_path=self.output_path).run(), 4)
        self.assertFalse(os.path.exists(self.output_path))

    def test_cancelled(self):
        self.mocks['read_ldap_org'].side_effect = SyncCancelledError('Sync cancelled')

        self.assertEqual(SyncOrchestrator(output_path=self.output_path).run(), 5)

        self.assertFalse(os.path.exists(self.output_path))
        self.mocks['send_failure'].assert_not_called()

    def test_unexpected_error(self):
        self.mocks['read_ldap_org'].side_effect = RuntimeError('boom')
        self.assertEqual(SyncOrchestrator(output_path=self.output_path).run(), 1)
        self.mocks['send_failure'].assert_called_once()


class TestHealthCheck(unittest.TestCase):
    """Test cases for SyncOrchestrator.health_check."""

    def setUp(self):
        self.test_config = {
            'ldap': {'target': 'ldap://ldap.example.com'},
            'notifications': {'enable_email': False},
        }

    @patch('ldap_org_sync.main.LDAPClient')
    @patch('ldap_org_sync.main.load_config')
    def test_healthy(self, mock_load_config, mock_client_class):
        mock_load_config.return_value = self.test_config
        mock_client_class.return_value.get_vendor.return_value.name = 'active_directory'

        health = SyncOrchestrator().health_check()

        self.assertEqual(health['status'], 'healthy')
        self.assertEqual(health['checks']['ldap']['status'], 'pass')
        self.assertIn('active_directory', health['checks']['ldap']['message'])
        self.assertEqual(health['checks']['notifications']['status'], 'skip')
        mock_client_class.return_value.disconnect.assert_called_once()

    @patch('ldap_org_sync.main.LDAPClient')
    @patch('ldap_org_sync.main.load_config')
    def test_ldap_unreachable(self, mock_load_config, mock_client_class):
        mock_load_config.return_value = self.test_config
        mock_client_class.return_value.connect.side_effect = LDAPConnectionError('refused')

        health = SyncOrchestrator().health_check()

        self.assertEqual(health['status'], 'unhealthy')
        self.assertEqual(health['checks']['ldap']['status'], 'fail')

    @patch('ldap_org_sync.main.load_config')
    def test_bad_configuration(self, mock_load_config):
        mock_load_config.side_effect = ConfigurationError('Missing ldap section')

        health = SyncOrchestrator().health_check()

        self.assertEqual(health['status'], 'unhealthy')
        self.assertEqual(health['checks']['configuration']['status'], 'fail')
        self.assertNotIn('ldap', health['checks'])

    @patch('ldap_org_sync.main.LDAPClient')
    @patch('ldap_org_sync.main.load_config')
    def test_incomplete_notification_config(self, mock_load_config, mock_client_class):
        self.test_config['notifications'] = {'enable_email': True, 'smtp_server': 'smtp.example.com'}
        mock_load_config.return_value = self.test_config

        health = SyncOrchestrator().health_check()

        self.assertEqual(health['status'], 'unhealthy')
        self.assertEqual(health['checks']['notifications']['status'], 'fail')


if __name__ == '__main__':
    unittest.main()
