"""
SFTP source.

Every operation opens its own SSH connection and closes it afterwards. Range
reads hand the connection over to the returned stream, which closes it.
"""

import fnmatch
import logging
import posixpath
import stat as statmod
import typing

import paramiko

from access_log_scanner.errors import SourceAuthError, StreamNotSupported
from access_log_scanner.sources.base import (
    SOURCE_SFTP,
    ClosingStream,
    LimitedReader,
    LogSource,
    TargetMeta,
    TargetRef,
    is_compressed_by_name,
)

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 15.0


class SFTPSource(LogSource):
    """
    Files on a remote host reached over SFTP.

    Args:
        host (str): Remote host name or address.
        port (int): SSH port (default 22).
        user (str): Login user.
        password (str): Password, optional if key_file is set.
        key_file (str): Path to a private key, optional if password is set.
        path (str): Single remote file to scan.
        pattern (str): Remote glob; only the basename may contain wildcards.
    """

    type = SOURCE_SFTP

    def __init__(
        self,
        website_id: str,
        source_id: str,
        host: str,
        port: int = 22,
        user: str = "",
        password: str = "",
        key_file: str = "",
        path: str = "",
        pattern: str = "",
        compression: str = "",
        range_policy: str = "auto",
        mode: str = "poll",
    ):
        super().__init__(website_id, source_id, compression, range_policy, mode)
        self.host = host
        self.port = port or 22
        self.user = user
        self.password = password
        self.key_file = key_file
        self.path = path
        self.pattern = pattern

    def _connect(self) -> typing.Tuple[paramiko.SSHClient, paramiko.SFTPClient]:
        """
        Open a fresh authenticated SSH connection and SFTP session.

        Raises:
            SourceAuthError: If no credentials are configured, the key file cannot be
            loaded, or the server rejects the credentials.
        """
        password = self.password if (self.password or "").strip() else ""
        key_file = (self.key_file or "").strip()
        if not password and not key_file:
            raise SourceAuthError(f"sftp source {self.id}: no password or key_file configured")

        pkey = None
        if key_file:
            try:
                pkey = paramiko.PKey.from_path(key_file)
            except (OSError, ValueError, TypeError, paramiko.SSHException, paramiko.pkey.UnknownKeyType) as e:
                raise SourceAuthError(f"sftp source {self.id}: cannot load key {key_file}: {e}") from e

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                self.host,
                port=self.port,
                username=self.user,
                password=password or None,
                pkey=pkey,
                timeout=CONNECT_TIMEOUT,
                allow_agent=False,
                look_for_keys=False,
            )
            sftp = client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            raise SourceAuthError(f"sftp source {self.id}: authentication failed for {self.user}@{self.host}: {e}") from e
        except Exception:
            client.close()
            raise
        logger.debug("Connected to sftp://%s@%s:%d for source %s", self.user, self.host, self.port, self.id)
        return client, sftp

    def list_targets(self) -> typing.List[TargetRef]:
        if not self.pattern and not self.path:
            return []
        client, sftp = self._connect()
        try:
            if self.pattern:
                directory = posixpath.dirname(self.pattern) or "."
                base = posixpath.basename(self.pattern)
                targets = []
                for entry in sftp.listdir_attr(directory):
                    if entry.st_mode is not None and statmod.S_ISDIR(entry.st_mode):
                        continue
                    if not fnmatch.fnmatchcase(entry.filename, base):
                        continue
                    full_path = posixpath.join(directory, entry.filename)
                    targets.append(self.make_target(
                        full_path,
                        size=entry.st_size or 0,
                        mod_time=int(entry.st_mtime or 0),
                    ))
                return sorted(targets, key=lambda t: t.key)

            attrs = sftp.stat(self.path)
            return [self.make_target(self.path, size=attrs.st_size or 0, mod_time=int(attrs.st_mtime or 0))]
        finally:
            sftp.close()
            client.close()

    def open_range(self, target: TargetRef, start: int, end: int = -1):
        self.check_range_policy(start)
        client, sftp = self._connect()
        try:
            f = sftp.open(target.key, 'rb')
        except Exception:
            sftp.close()
            client.close()
            raise
        try:
            if start > 0:
                f.seek(start)
        except Exception:
            f.close()
            sftp.close()
            client.close()
            raise
        reader = f
        if end > 0 and end > start:
            reader = LimitedReader(f, end - start)
        return ClosingStream(reader, [f, sftp, client])

    def open_stream(self, target: TargetRef):
        raise StreamNotSupported(f"sftp source {self.id} only supports range reads")

    def stat(self, target: TargetRef) -> TargetMeta:
        client, sftp = self._connect()
        try:
            attrs = sftp.stat(target.key)
        finally:
            sftp.close()
            client.close()
        return TargetMeta(
            size=attrs.st_size or 0,
            mod_time=int(attrs.st_mtime or 0),
            compressed=is_compressed_by_name(target.key, self.compression),
        )
