"""
Main orchestrator for LDAP Org Sync application.

This module runs one complete sync: it loads configuration, connects to the
directory, reads the organisation graph and publishes it as a YAML stream of
Group and User entities.
"""

import sys
import json
import signal
import logging
import threading
from datetime import datetime
from typing import Dict, Any, Optional

import yaml

from ldap_org_sync.config import load_config, ConfigurationError
from ldap_org_sync.ingest import SyncCancelledError
from ldap_org_sync.ldap_client import LDAPClient, LDAPConnectionError, RetrievalError
from ldap_org_sync.logging_setup import setup_logging
from ldap_org_sync.notifications import (
    send_failure_notification,
    send_success_summary,
    test_notification_config
)
from ldap_org_sync.org import read_ldap_org
from ldap_org_sync.resolve import ResolutionError
from ldap_org_sync.transform import RecordTransformError
from ldap_org_sync.vendors import VendorDetectionError

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_CONNECTION = 3
EXIT_SYNC_FAILED = 4
EXIT_CANCELLED = 5


class SyncOrchestrator:
    """
    Main orchestrator for a directory to catalog sync run.

    A run either publishes the whole organisation graph or nothing: every
    failure aborts the run before any output is written.
    """

    def __init__(self, config_path: Optional[str] = None, output_path: Optional[str] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            output_path: Where to write the entities; overrides output.path from the config
            cancel_event: Set from another thread or a signal handler to stop the run
        """
        self.config = None
        self.ldap_client = None
        self.config_path = config_path
        self.output_path = output_path
        self.cancel_event = cancel_event or threading.Event()

        self.sync_stats = {
            'vendor': None,
            'users': 0,
            'groups': 0,
            'records_processed': 0,
            'output': None,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0
        }

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            logger.info("Starting LDAP Org Sync")

            self._connect_ldap()
            org = self._read_org()
            self._write_output(org)

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            self._log_sync_summary()
            self._send_success_notification()

            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION
        except (LDAPConnectionError, VendorDetectionError) as e:
            logger.error(f"LDAP connection error: {e}")
            self._send_failure_notification("LDAP Connection Failed", str(e))
            return EXIT_CONNECTION
        except RecordTransformError as e:
            logger.error(f"Invalid directory entry: {e}")
            self._send_failure_notification("Invalid Directory Entry", str(e),
                                            {'dn': e.dn, 'attribute': e.attribute_name})
            return EXIT_SYNC_FAILED
        except (RetrievalError, ResolutionError) as e:
            logger.error(f"Sync failed: {e}")
            self._send_failure_notification("Sync Failed", str(e))
            return EXIT_SYNC_FAILED
        except SyncCancelledError as e:
            logger.warning(f"{e}; no entities were written")
            return EXIT_CANCELLED
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Sync Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        self.config = load_config(self.config_path)
        logger.debug("Configuration loaded successfully")

    def _connect_ldap(self):
        """Establish LDAP connection."""
        ldap_config = self.config['ldap']
        error_config = self.config.get('error_handling', {})

        self.ldap_client = LDAPClient(ldap_config)

        try:
            self.ldap_client.connect(
                max_retries=error_config.get('max_retries', 3),
                retry_wait=error_config.get('retry_wait_seconds', 5)
            )
        except LDAPConnectionError:
            self.ldap_client = None
            raise

    def _read_org(self) -> Dict[str, Any]:
        """Read users and groups and resolve their relations."""
        ldap_config = self.config['ldap']
        ingest_config = self.config.get('ingest', {})

        org = read_ldap_org(
            self.ldap_client,
            ldap_config.get('users', []),
            ldap_config.get('groups', []),
            max_workers=ingest_config.get('max_workers', 4),
            progress_interval=ingest_config.get('progress_interval_seconds', 5),
            cancel_event=self.cancel_event
        )

        self.sync_stats['vendor'] = self.ldap_client.get_vendor().name
        self.sync_stats['users'] = len(org['users'])
        self.sync_stats['groups'] = len(org['groups'])
        self.sync_stats['records_processed'] = org['processed']
        return org

    def _write_output(self, org: Dict[str, Any]):
        """Write groups then users as a multi-document YAML stream."""
        output_path = self.output_path or self.config.get('output', {}).get('path')
        documents = org['groups'] + org['users']

        if output_path:
            with open(output_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump_all(documents, f, default_flow_style=False, sort_keys=False,
                                   allow_unicode=True)
            logger.info(f"Wrote {len(documents)} entities to {output_path}")
        else:
            yaml.safe_dump_all(documents, sys.stdout, default_flow_style=False, sort_keys=False,
                               allow_unicode=True)

        self.sync_stats['output'] = output_path or '<stdout>'

    def _send_failure_notification(self, title: str, error_message: str,
                                   additional_info: Optional[Dict[str, Any]] = None):
        """Send email notification for failures."""
        if not self.config:
            return
        try:
            notifications_config = self.config.get('notifications', {})
            send_failure_notification(title, error_message, notifications_config, additional_info)
        except Exception as e:
            logger.error(f"Failed to send failure notification: {e}")

    def _send_success_notification(self):
        """Send email notification for successful sync."""
        try:
            notifications_config = self.config.get('notifications', {})
            send_success_summary(self.sync_stats, notifications_config)
        except Exception as e:
            logger.error(f"Failed to send success notification: {e}")

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.sync_stats

        runtime_str = f"{stats['runtime_seconds']:.2f} seconds"
        if stats['runtime_seconds'] > 60:
            minutes = int(stats['runtime_seconds'] // 60)
            seconds = stats['runtime_seconds'] % 60
            runtime_str = f"{minutes}m {seconds:.1f}s"

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Vendor: {stats['vendor']}")
        logger.info(f"Records processed: {stats['records_processed']}")
        logger.info(f"Users: {stats['users']}")
        logger.info(f"Groups: {stats['groups']}")
        logger.info(f"Output: {stats['output']}")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the sync system.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'

        if self.config:
            test_client = LDAPClient(self.config['ldap'])
            try:
                test_client.connect(max_retries=1, retry_wait=1)
                vendor = test_client.get_vendor()
                health_status['checks']['ldap'] = {
                    'status': 'pass',
                    'message': f'LDAP connection successful (vendor: {vendor.name})'
                }
            except (LDAPConnectionError, VendorDetectionError) as e:
                health_status['checks']['ldap'] = {
                    'status': 'fail',
                    'message': f'LDAP connection failed: {e}'
                }
                health_status['status'] = 'unhealthy'
            finally:
                test_client.disconnect()

            notifications_config = self.config.get('notifications', {})
            if notifications_config.get('enable_email', False):
                required_fields = ['smtp_server', 'email_from', 'email_to']
                missing_fields = [f for f in required_fields if not notifications_config.get(f)]

                if missing_fields:
                    health_status['checks']['notifications'] = {
                        'status': 'fail',
                        'message': f'Notification configuration invalid: missing {missing_fields}'
                    }
                    health_status['status'] = 'unhealthy'
                else:
                    health_status['checks']['notifications'] = {
                        'status': 'pass',
                        'message': 'Email notification configuration valid'
                    }
            else:
                health_status['checks']['notifications'] = {
                    'status': 'skip',
                    'message': 'Email notifications disabled'
                }

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.ldap_client:
            self.ldap_client.disconnect()


def main():
    """Main entry point for the application."""
    import argparse

    parser = argparse.ArgumentParser(description='LDAP Org Sync Application')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--output', '-o', help='Write entities to this file instead of output.path or stdout')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(config_path=args.config, output_path=args.output)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.test_email:
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(EXIT_CONFIGURATION)

        if test_notification_config(orchestrator.config.get('notifications', {})):
            print("Test email sent successfully")
            sys.exit(0)
        print("Failed to send test email")
        sys.exit(1)

    else:
        # SIGTERM from a scheduler stops the run at the next page boundary
        signal.signal(signal.SIGTERM, lambda signum, frame: orchestrator.cancel_event.set())
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
