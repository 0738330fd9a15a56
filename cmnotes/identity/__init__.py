"""
Identity Layer

RESPONSIBILITY: Stable handle-based identity for CMs and dApps
ALLOWED INPUTS: PermissionGrant mappings and reconciled Notes
OUTPUTS: CMIdentityResolver
"""

from .resolver import CMIdentity, CMIdentityResolver

__all__ = ['CMIdentity', 'CMIdentityResolver']
