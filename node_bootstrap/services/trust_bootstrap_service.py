"""
Runs one node's side of the trust bootstrap.

The authority generates the bundle, serves it for a bounded session and then
installs its own copy. A follower polls the authority until the bundle is
retrievable and installs it. There is no in-band signal between the two:
a follower that starts before the authority serves simply retries.
"""
import contextlib
import logging
import os
import tempfile
import threading
from typing import Optional

from ..models.config import Config
from ..models.errors import BootstrapError, OperationCancelled
from ..models.node import BootstrapResult, NodeIdentity, NodeState, NodeStateMachine
from ..models.trust import StopReason, TrustBundle
from ..security.bundle_inspector import BundleInspector
from .bundle_generator import BundleGenerator, create_backend
from .bundle_installer import BundleInstaller
from .distribution_server import DistributionServer, DistributionSession
from .retrieval_client import BackoffPolicy, RetrievalClient, source_url_for


# How often the authority checks for cancellation while serving
CANCEL_POLL_SECONDS = 0.2


class TrustBootstrapService:
    """Drives the per-node state machine from Idle to Installed or Failed."""

    def __init__(self, config: Config,
                 generator: Optional[BundleGenerator] = None,
                 server: Optional[DistributionServer] = None,
                 client: Optional[RetrievalClient] = None,
                 installer: Optional[BundleInstaller] = None,
                 inspector: Optional[BundleInspector] = None,
                 logging_service=None):
        self.config = config
        self.generator = generator or BundleGenerator(
            create_backend(config), bundle_file_name=config.bundle_file_name
        )
        self.server = server or DistributionServer(
            host=config.bind_host,
            timeout_seconds=config.session_timeout_seconds,
            stop_after_first_fetch=config.stop_after_first_fetch
        )
        self.client = client or RetrievalClient(timeout=config.request_timeout_seconds)
        self.installer = installer or BundleInstaller()
        self.inspector = inspector or BundleInspector(password=config.bundle_password)
        self.logging_service = logging_service
        self.logger = logging.getLogger(__name__)

        self.machine = NodeStateMachine()
        self._cancelled = threading.Event()

    def run(self, identity: NodeIdentity) -> BootstrapResult:
        """
        Execute the identity's side of the protocol.

        Raises:
            BootstrapError: Any fatal failure; the state machine is left in FAILED
        """
        self.logger.info(
            f"Starting trust bootstrap for {identity.node_name} "
            f"({identity.role.value}) in cluster {identity.cluster_name}"
        )
        try:
            if identity.is_authority:
                result = self._run_authority(identity)
            else:
                result = self._run_follower(identity)
        except BootstrapError as e:
            self.machine.fail()
            self.logger.error(f"Trust bootstrap failed at step {e.step}")
            raise
        except Exception:
            self.machine.fail()
            raise

        self.logger.info(f"Trust bootstrap complete: {result.install.dest_path}")
        return result

    def stop(self) -> None:
        """
        Request cancellation; safe to call from a signal handler.

        While the authority serves, the session is stopped and the node still
        installs its own copy. At any other point the run ends with
        OperationCancelled at the next check.
        """
        self._cancelled.set()

    def _check_cancelled(self, step: str):
        if self._cancelled.is_set():
            raise OperationCancelled(f"Cancelled by operator during {step}", step=step)

    def _step(self, name: str):
        if self.logging_service is not None:
            return self.logging_service.measure_step(name)
        return contextlib.nullcontext()

    def _run_authority(self, identity: NodeIdentity) -> BootstrapResult:
        config = self.config
        work_dir = config.work_dir or config.install_dir

        self.machine.advance(NodeState.GENERATING)
        with self._step("generate"):
            bundle = self.generator.generate_bundle(work_dir)
        self._check_cancelled("generate")
        self._inspect(bundle)

        self.machine.advance(NodeState.SERVING)
        with self._step("serve"):
            session = self.server.serve(bundle.path, config.distribution_port)
            with session:
                self._announce(session)
                reason = self._wait_for_session(session)

        self.machine.advance(NodeState.STOPPED)
        if session.fetch_count == 0:
            self.logger.warning(
                f"Distribution ended ({reason.value}) before any follower downloaded the bundle"
            )

        with self._step("install"):
            install = self.installer.install(
                bundle, config.bundle_install_path, config.service_user,
                group=config.service_group or None, mode=config.bundle_mode
            )
        self.machine.advance(NodeState.INSTALLED)

        return BootstrapResult(
            identity=identity,
            state=self.machine.state,
            bundle=bundle,
            install=install,
            stop_reason=reason,
            fetch_count=session.fetch_count,
            history=list(self.machine.history)
        )

    def _wait_for_session(self, session: DistributionSession) -> StopReason:
        while True:
            reason = session.wait(timeout=CANCEL_POLL_SECONDS)
            if reason is not None:
                return reason
            if self._cancelled.is_set():
                session.stop(StopReason.CANCELLED)

    def _run_follower(self, identity: NodeIdentity) -> BootstrapResult:
        config = self.config

        self.machine.advance(NodeState.AWAITING_SOURCE)
        source_url = source_url_for(
            config.seed_hosts[0], config.distribution_port, config.bundle_file_name
        )

        self.machine.advance(NodeState.RETRIEVING)
        with tempfile.TemporaryDirectory(prefix="node-bootstrap-") as staging_dir:
            staging_path = os.path.join(staging_dir, config.bundle_file_name)
            with self._step("retrieve"):
                bundle = self.client.retrieve(
                    source_url,
                    staging_path,
                    max_attempts=config.max_attempts,
                    backoff=BackoffPolicy.from_config(config),
                    cancel_event=self._cancelled
                )
            self.machine.advance(NodeState.RETRIEVED)
            self._inspect(bundle)

            with self._step("install"):
                install = self.installer.install(
                    bundle, config.bundle_install_path, config.service_user,
                    group=config.service_group or None, mode=config.bundle_mode
                )
        self.machine.advance(NodeState.INSTALLED)

        return BootstrapResult(
            identity=identity,
            state=self.machine.state,
            bundle=TrustBundle(content=bundle.content, file_name=bundle.file_name,
                               path=install.dest_path),
            install=install,
            campaign=self.client.last_campaign,
            history=list(self.machine.history)
        )

    def _announce(self, session: DistributionSession):
        host = self.config.advertise_host or "<your-server-ip>"
        self.logger.info(f"Followers can now download the bundle from {session.url_for(host)}")
        self.logger.warning(
            "The bundle is served over plain HTTP without authentication; "
            "keep this step on a trusted network segment"
        )

    def _inspect(self, bundle: TrustBundle):
        try:
            inspection = self.inspector.inspect(bundle)
        except ValueError as e:
            # certutil stores may be password protected
            self.logger.warning(f"Could not inspect {bundle.file_name}: {e}")
            return None
        if not inspection.is_usable:
            self.logger.warning(f"{bundle.file_name} lacks a valid CA-signed key pair")
        return inspection
