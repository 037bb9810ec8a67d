"""
Repository Package.

Exports the RepositoryCommitter, which bootstraps and publishes policy files
into the version-controlled policy repository.
"""

from .committer import ALLOW_FILE_NAME, DENY_FILE_NAME, RepositoryCommitter

__all__ = ["ALLOW_FILE_NAME", "DENY_FILE_NAME", "RepositoryCommitter"]
