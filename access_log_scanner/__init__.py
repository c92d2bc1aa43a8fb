"""
access_log_scanner

Incremental access-log scanner for web servers.

Pulls access logs from local files, SFTP servers, S3-compatible object stores
and plain HTTP endpoints, remembers how far each file has been read, and hands
only new lines to the line parser. Detects rotation and truncation from cheap
metadata (size, modification time, entity tag).

License: GNU GPL v3 or later
"""

__version__ = "0.3.0"
