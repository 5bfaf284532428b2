"""
Places the trust bundle into the node's configuration directory.
"""
import grp
import hashlib
import logging
import os
import pwd
import stat
import tempfile
from typing import Optional, Tuple

from ..models.errors import InstallError
from ..models.trust import InstallResult, TrustBundle


DEFAULT_BUNDLE_MODE = 0o640


class BundleInstaller:
    """Installs the bundle owned by the service account, readable by owner and group only."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def install(self, bundle: TrustBundle, dest_path: str, owner: str,
                group: Optional[str] = None, mode: int = DEFAULT_BUNDLE_MODE) -> InstallResult:
        """
        Install ``bundle`` at ``dest_path``.

        Re-running with the same bundle already in place with the right
        ownership and mode changes nothing and reports ``changed=False``.

        Args:
            bundle: Bundle to install; must not be empty
            dest_path: Final path of the bundle
            owner: Service account that owns the file
            group: Owning group; defaults to the owner's primary group
            mode: Permission bits; world bits are rejected

        Raises:
            InstallError: On empty bundle, unknown account, or any filesystem failure
        """
        if bundle.is_empty():
            raise InstallError(f"Refusing to install an empty trust bundle at {dest_path}")
        if mode & 0o007:
            raise InstallError(f"Mode {oct(mode)} would give world access to {dest_path}")

        uid, gid, group_name = self._resolve_account(owner, group)

        try:
            if os.path.exists(dest_path):
                current = os.stat(dest_path)
                same_content = self._file_sha256(dest_path) == bundle.sha256
                same_meta = (current.st_uid == uid and current.st_gid == gid
                             and stat.S_IMODE(current.st_mode) == mode)
                if same_content and same_meta:
                    self.logger.info(f"{dest_path} already up to date")
                    return self._result(dest_path, False, bundle, owner, group_name, mode)
                if same_content:
                    self.logger.info(f"Fixing ownership and permissions of {dest_path}")
                    os.chown(dest_path, uid, gid)
                    os.chmod(dest_path, mode)
                    return self._result(dest_path, True, bundle, owner, group_name, mode)

            self._write_atomically(bundle.content, dest_path, uid, gid, mode)
        except OSError as e:
            raise InstallError(f"Failed to install {dest_path}: {e}") from e

        self.logger.info(
            f"Installed {dest_path} ({bundle.size} bytes) as {owner}:{group_name} {oct(mode)}"
        )
        return self._result(dest_path, True, bundle, owner, group_name, mode)

    def _resolve_account(self, owner: str, group: Optional[str]) -> Tuple[int, int, str]:
        try:
            pw = pwd.getpwnam(owner)
        except KeyError:
            raise InstallError(f"Unknown user: {owner}") from None

        if group:
            try:
                return pw.pw_uid, grp.getgrnam(group).gr_gid, group
            except KeyError:
                raise InstallError(f"Unknown group: {group}") from None

        try:
            group_name = grp.getgrgid(pw.pw_gid).gr_name
        except KeyError:
            group_name = str(pw.pw_gid)
        return pw.pw_uid, pw.pw_gid, group_name

    def _write_atomically(self, content: bytes, dest_path: str, uid: int, gid: int, mode: int):
        dest_dir = os.path.dirname(os.path.abspath(dest_path))
        os.makedirs(dest_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".install-", dir=dest_dir)
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chown(tmp_path, uid, gid)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, dest_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _file_sha256(self, path: str) -> str:
        sha256_hash = hashlib.sha256()
        with open(path, "rb") as f:
            for byte_block in iter(lambda: f.read(4096), b""):
                sha256_hash.update(byte_block)
        return sha256_hash.hexdigest()

    def _result(self, dest_path, changed, bundle, owner, group_name, mode) -> InstallResult:
        return InstallResult(
            dest_path=dest_path,
            changed=changed,
            sha256=bundle.sha256,
            owner=owner,
            group=group_name,
            mode=mode
        )
