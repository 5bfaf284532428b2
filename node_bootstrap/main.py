"""
Command line entry point for the node trust bootstrap.
Handles configuration loading, logging setup, signal handling and exit codes.
"""

import os
import sys
import signal
import logging
from typing import Any, Dict, Optional

from .models.config import Config
from .models.errors import BootstrapError
from .models.node import BootstrapResult, NodeIdentity, NodeRole
from .services.config_service import ConfigService
from .services.logging_service import LoggingService
from .services.trust_bootstrap_service import TrustBootstrapService


class NodeBootstrapApplication:
    """Wires configuration, logging and the trust bootstrap for one node."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: Path to configuration file (optional)
        """
        self.config_path = config_path or self._get_default_config_path()
        self.logger = logging.getLogger(__name__)
        self.config_service = ConfigService()
        self.config: Optional[Config] = None
        self.logging_service: Optional[LoggingService] = None
        self.bootstrap_service: Optional[TrustBootstrapService] = None

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path."""
        possible_paths = [
            "node_bootstrap.properties",
            "config/node_bootstrap.properties",
            os.path.expanduser("~/.node_bootstrap/node_bootstrap.properties"),
            "/etc/node_bootstrap/node_bootstrap.properties"
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return possible_paths[0]

    def initialize(self, overrides: Optional[Dict[str, Any]] = None) -> bool:
        """
        Load configuration and set up logging and services.

        Returns:
            True if initialization successful, False otherwise
        """
        if not logging.getLogger().handlers:
            logging.basicConfig(
                level=logging.INFO,
                format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                stream=sys.stdout
            )

        try:
            self.logger.info(f"Loading configuration from: {self.config_path}")
            self.config = self.config_service.load_config(self.config_path, overrides)
        except FileNotFoundError as e:
            self.logger.error(str(e))
            self.logger.info("Create one with --create-config and edit it before rerunning")
            return False
        except BootstrapError as e:
            self.logger.error(str(e))
            return False

        self.logging_service = LoggingService(self.config)
        self.bootstrap_service = TrustBootstrapService(
            self.config, logging_service=self.logging_service
        )
        self.logger.info("Configuration loaded successfully")
        return True

    def run(self, identity: NodeIdentity) -> BootstrapResult:
        """
        Run the trust bootstrap for ``identity``.

        SIGINT/SIGTERM end an authority's distribution session, after which the
        node still installs its own copy. At any other step they cancel the
        run with OperationCancelled.

        Raises:
            BootstrapError: On any fatal failure
        """
        if self.bootstrap_service is None:
            raise RuntimeError("Application not initialized. Call initialize() first.")

        previous = self._install_signal_handlers()
        try:
            return self.bootstrap_service.run(identity)
        except BootstrapError as e:
            self.logging_service.track_error(e, {'node_name': identity.node_name})
            raise
        finally:
            self._restore_signal_handlers(previous)
            self.logger.info(f"Step timings: {self.logging_service.get_step_summary()}")

    def _install_signal_handlers(self) -> Dict[int, Any]:
        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            self.logger.info(f"Received {signal_name} signal, cancelling bootstrap...")
            self.bootstrap_service.stop()

        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, signal_handler)
        return previous

    def _restore_signal_handlers(self, previous: Dict[int, Any]):
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        description='Provision trust material for a search cluster node',
        epilog='Example: node-bootstrap my-cluster master master-1'
    )
    parser.add_argument('cluster_name', nargs='?', help='Cluster name')
    parser.add_argument('role', nargs='?', help='Node role: master (authority) or data (follower)')
    parser.add_argument('node_name', nargs='?', help='Node name')
    parser.add_argument('--config', '-c', help='Configuration file path')
    parser.add_argument('--port', type=int, help='Distribution port (default from config, 8000)')
    parser.add_argument('--timeout', type=int,
                        help='Seconds the authority serves the bundle (0 = until interrupted)')
    parser.add_argument('--stop-after-first-fetch', action='store_true', default=None,
                        help='Authority stops serving after the first complete download')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'])
    parser.add_argument('--check-config', action='store_true', help='Check configuration and exit')
    parser.add_argument('--create-config', action='store_true',
                        help='Write an example configuration file and exit')
    return parser


def main(argv=None):
    """Main entry point for the application."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    app = NodeBootstrapApplication(config_path=args.config)

    if args.create_config:
        app.config_service.create_default_config_file(app.config_path)
        print(f"Example configuration written to {app.config_path}")
        sys.exit(0)

    identity = None
    if not args.check_config:
        if not (args.cluster_name and args.role and args.node_name):
            parser.print_usage()
            print("Example: node-bootstrap my-cluster master master-1")
            sys.exit(1)

        try:
            identity = NodeIdentity(
                role=NodeRole.parse(args.role),
                node_name=args.node_name,
                cluster_name=args.cluster_name
            )
        except ValueError as e:
            print(str(e))
            sys.exit(1)

    overrides = {
        'cluster_name': args.cluster_name,
        'distribution_port': args.port,
        'session_timeout_seconds': args.timeout,
        'stop_after_first_fetch': args.stop_after_first_fetch,
        'log_level': args.log_level,
    }

    if not app.initialize(overrides):
        print("Failed to initialize node bootstrap")
        sys.exit(1)

    if args.check_config:
        config = app.config
        print("Configuration check passed")
        print(f"Config path: {app.config_path}")
        print(f"Bundle path: {config.bundle_install_path}")
        print(f"Seed hosts: {', '.join(config.seed_hosts)}")
        print(f"Distribution port: {config.distribution_port}")
        sys.exit(0)

    try:
        result = app.run(identity)
    except BootstrapError as e:
        print(f"Bootstrap failed at step '{e.step}': {e}")
        sys.exit(1)

    print(f"Trust bundle installed at {result.install.dest_path} "
          f"for role: {identity.role.value}, node name: {identity.node_name}")
    sys.exit(0)


if __name__ == '__main__':
    main()
