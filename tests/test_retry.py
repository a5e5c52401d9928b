#!/usr/bin/env python3
"""
Unit tests for the connection retry policy.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

from ldap3.core.exceptions import LDAPBindError, LDAPSocketOpenError

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_org_sync.retry import MaxRetriesExceeded, retry_connect

TARGET = 'ldap://ldap.example.com'


@patch('ldap_org_sync.retry.time.sleep')
class TestRetryConnect(unittest.TestCase):
    """Test cases for retry_connect."""

    def test_success_first_try(self, mock_sleep):
        open_and_bind = Mock(return_value='bound')
        self.assertEqual(retry_connect(open_and_bind, TARGET, attempts=3), 'bound')
        open_and_bind.assert_called_once()
        mock_sleep.assert_not_called()

    def test_success_after_failures(self, mock_sleep):
        open_and_bind = Mock(side_effect=[LDAPSocketOpenError('refused'), LDAPBindError('busy'), 'bound'])

        with self.assertLogs('ldap_org_sync.retry', level='INFO') as logs:
            result = retry_connect(open_and_bind, TARGET, attempts=3, wait_seconds=2)

        self.assertEqual(result, 'bound')
        self.assertEqual(open_and_bind.call_count, 3)
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [2, 2])
        self.assertIn(f'LDAP bind to {TARGET} failed on attempt 1', logs.output[0])
        self.assertIn('Connected to ldap://ldap.example.com on attempt 3', logs.output[-1])

    def test_gives_up(self, mock_sleep):
        error = LDAPSocketOpenError('refused')
        open_and_bind = Mock(side_effect=error)

        with self.assertRaises(MaxRetriesExceeded) as context:
            retry_connect(open_and_bind, TARGET, attempts=2, wait_seconds=0)

        self.assertEqual(context.exception.attempts, 2)
        self.assertIs(context.exception.last_exception, error)
        self.assertEqual(open_and_bind.call_count, 2)
        # No pause after the final attempt
        self.assertEqual(mock_sleep.call_count, 1)

    def test_other_errors_are_not_retried(self, mock_sleep):
        open_and_bind = Mock(side_effect=ValueError('bad dn'))
        with self.assertRaises(ValueError):
            retry_connect(open_and_bind, TARGET, attempts=3)
        open_and_bind.assert_called_once()

    def test_at_least_one_attempt(self, mock_sleep):
        open_and_bind = Mock(return_value='bound')
        self.assertEqual(retry_connect(open_and_bind, TARGET, attempts=0), 'bound')


if __name__ == '__main__':
    unittest.main()
