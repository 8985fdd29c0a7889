"""
Access package: detect write/maintainer access of an applicant to a repository.
"""

from .permissions import PermissionResolver, resolve_write_access

__all__ = ["PermissionResolver", "resolve_write_access"]
