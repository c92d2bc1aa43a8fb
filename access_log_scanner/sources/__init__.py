"""
Log source backends and the factory that builds them from configuration.
"""

from access_log_scanner.errors import ConfigError
from access_log_scanner.sources.agent import AgentSource
from access_log_scanner.sources.base import (
    MODE_POLL,
    MODE_STREAM,
    RANGE_AUTO,
    RANGE_FORCE,
    RANGE_FULL,
    SOURCE_AGENT,
    SOURCE_HTTP,
    SOURCE_LOCAL,
    SOURCE_S3,
    SOURCE_SFTP,
    SOURCE_TYPES,
    LogSource,
    TargetMeta,
    TargetRef,
    is_compressed_by_name,
    normalize_range_policy,
)
from access_log_scanner.sources.http import HTTPSource
from access_log_scanner.sources.local import LocalSource
from access_log_scanner.sources.s3 import S3Source
from access_log_scanner.sources.sftp import SFTPSource


def new_source_from_config(website_id: str, cfg: dict) -> LogSource:
    """
    Build a source backend from one validated source configuration block.

    Args:
        website_id (str): Owning website.
        cfg (dict): Source configuration (see config.validate_source).

    Returns:
        LogSource: Backend instance.

    Raises:
        ConfigError: If the source type is unknown.
    """
    source_type = (cfg.get('type') or '').strip().lower()
    common = {
        'compression': cfg.get('compression', ''),
        'range_policy': cfg.get('range_policy', RANGE_AUTO),
        'mode': cfg.get('mode', MODE_POLL),
    }
    source_id = cfg['id']
    if source_type == SOURCE_LOCAL:
        return LocalSource(website_id, source_id, path=cfg.get('path', ''), pattern=cfg.get('pattern', ''), **common)
    if source_type == SOURCE_SFTP:
        return SFTPSource(
            website_id, source_id,
            host=cfg['host'],
            port=int(cfg.get('port') or 22),
            user=cfg.get('user', ''),
            password=cfg.get('password', ''),
            key_file=cfg.get('key_file', ''),
            path=cfg.get('path', ''),
            pattern=cfg.get('pattern', ''),
            **common,
        )
    if source_type == SOURCE_S3:
        return S3Source(
            website_id, source_id,
            bucket=cfg['bucket'],
            prefix=cfg.get('prefix', ''),
            pattern=cfg.get('pattern', ''),
            endpoint=cfg.get('endpoint', ''),
            region=cfg.get('region', ''),
            access_key=cfg.get('access_key', ''),
            secret_key=cfg.get('secret_key', ''),
            **common,
        )
    if source_type == SOURCE_HTTP:
        return HTTPSource(
            website_id, source_id,
            url=cfg['url'],
            headers=cfg.get('headers'),
            tls=cfg.get('tls'),
            timeout=cfg.get('timeout_seconds', 30),
            **common,
        )
    if source_type == SOURCE_AGENT:
        return AgentSource(website_id, source_id, mode=MODE_STREAM)
    raise ConfigError(f"Unknown source type {source_type!r} for source {source_id!r}")


__all__ = [
    "AgentSource",
    "HTTPSource",
    "LocalSource",
    "LogSource",
    "MODE_POLL",
    "MODE_STREAM",
    "RANGE_AUTO",
    "RANGE_FORCE",
    "RANGE_FULL",
    "S3Source",
    "SFTPSource",
    "SOURCE_AGENT",
    "SOURCE_HTTP",
    "SOURCE_LOCAL",
    "SOURCE_S3",
    "SOURCE_SFTP",
    "SOURCE_TYPES",
    "TargetMeta",
    "TargetRef",
    "is_compressed_by_name",
    "new_source_from_config",
    "normalize_range_policy",
]
