"""
YAML configuration loading and validation.

Example:

    defaults:
      recent_window_days: 7
      dedup_max_entries: 100000
      dedup_ttl_seconds: 600
      interval_seconds: 60
    websites:
      - id: main
        sources:
          - id: nginx
            type: local
            pattern: /var/log/nginx/access.log*
"""

import typing

import yaml

from access_log_scanner.dedup import DedupCache
from access_log_scanner.errors import ConfigError
from access_log_scanner.sources import (
    SOURCE_AGENT,
    SOURCE_HTTP,
    SOURCE_LOCAL,
    SOURCE_S3,
    SOURCE_SFTP,
    SOURCE_TYPES,
    LogSource,
    new_source_from_config,
)

DEFAULTS = {
    'recent_window_days': 7,
    'dedup_max_entries': 100000,
    'dedup_ttl_seconds': 600,
    'interval_seconds': 60,
}

COMPRESSION_VALUES = ('', 'auto', 'gz', 'none')
RANGE_POLICY_VALUES = ('auto', 'range', 'full')
MODE_VALUES = ('poll', 'stream')


def load_config(config_path: str) -> dict:
    """
    Load YAML configuration from file and validate.

    Args:
        config_path (str): Path to YAML configuration file.

    Returns:
        dict: Parsed configuration with defaults filled in.

    Raises:
        ConfigError: If the file is not valid YAML or required keys are missing.
    """
    with open(config_path, 'r') as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    validate_config(config)
    return config


def validate_config(config: dict) -> None:
    """
    Validate the configuration in place, filling in defaults.

    Args:
        config (dict): Configuration dictionary.

    Raises:
        ConfigError: If required keys are missing or values are malformed.
    """
    if not isinstance(config, dict):
        raise ConfigError("Configuration must be a mapping")
    if 'websites' not in config:
        raise ConfigError("Missing required config key: websites")

    defaults = dict(DEFAULTS)
    defaults.update(config.get('defaults') or {})
    for key in DEFAULTS:
        try:
            defaults[key] = int(defaults[key])
        except (TypeError, ValueError):
            raise ConfigError(f"defaults.{key} must be an integer, got {defaults[key]!r}")
    config['defaults'] = defaults

    websites = config['websites']
    if not isinstance(websites, list) or not websites:
        raise ConfigError("websites must be a non-empty list")
    seen_websites = set()
    for website in websites:
        website_id = website.get('id') if isinstance(website, dict) else None
        if not website_id:
            raise ConfigError("Every website needs an id")
        if website_id in seen_websites:
            raise ConfigError(f"Duplicate website id: {website_id}")
        seen_websites.add(website_id)

        sources = website.get('sources') or []
        if not isinstance(sources, list):
            raise ConfigError(f"websites[{website_id}].sources must be a list")
        seen_sources = set()
        for source in sources:
            validate_source(website_id, source)
            if source['id'] in seen_sources:
                raise ConfigError(f"Duplicate source id {source['id']!r} in website {website_id}")
            seen_sources.add(source['id'])
        website['sources'] = sources


def validate_source(website_id: str, source: dict) -> None:
    """Check one source block for the fields its type requires."""
    if not isinstance(source, dict):
        raise ConfigError(f"Sources of website {website_id} must be mappings")
    source_id = source.get('id')
    if not source_id:
        raise ConfigError(f"A source of website {website_id} has no id")
    where = f"source {source_id!r} of website {website_id}"

    source_type = str(source.get('type') or '').strip().lower()
    if source_type not in SOURCE_TYPES:
        raise ConfigError(f"{where}: type must be one of {', '.join(SOURCE_TYPES)}")
    source['type'] = source_type

    compression = str(source.get('compression') or '').strip().lower()
    if compression not in COMPRESSION_VALUES:
        raise ConfigError(f"{where}: compression must be auto, gz or none")
    range_policy = str(source.get('range_policy') or 'auto').strip().lower()
    if range_policy not in RANGE_POLICY_VALUES:
        raise ConfigError(f"{where}: range_policy must be auto, range or full")
    mode = str(source.get('mode') or 'poll').strip().lower()
    if mode not in MODE_VALUES:
        raise ConfigError(f"{where}: mode must be poll or stream")
    source['mode'] = mode

    if source_type in (SOURCE_LOCAL, SOURCE_SFTP) and not (source.get('path') or source.get('pattern')):
        raise ConfigError(f"{where}: path or pattern is required")
    if source_type == SOURCE_SFTP:
        _require(source, where, 'host', 'user')
        if not (source.get('password') or source.get('key_file')):
            raise ConfigError(f"{where}: password or key_file is required")
    elif source_type == SOURCE_S3:
        _require(source, where, 'bucket')
    elif source_type == SOURCE_HTTP:
        _require(source, where, 'url')
    elif source_type == SOURCE_AGENT:
        source['mode'] = 'stream'


def _require(source: dict, where: str, *keys: str) -> None:
    for key in keys:
        if not source.get(key):
            raise ConfigError(f"{where}: {key} is required")


def build_sources(config: dict, website_id: str) -> typing.List[LogSource]:
    """
    Build every source backend for one website.

    Raises:
        ConfigError: If the website is not configured.
    """
    for website in config['websites']:
        if website['id'] == website_id:
            return [new_source_from_config(website_id, source) for source in website['sources']]
    raise ConfigError(f"Unknown website: {website_id}")


def build_dedup_cache(config: dict) -> DedupCache:
    """Build the shared dedup cache from the validated defaults."""
    defaults = config['defaults']
    return DedupCache(max_entries=defaults['dedup_max_entries'], ttl=defaults['dedup_ttl_seconds'])
