"""
Query & Analysis Interfaces

RESPONSIBILITY: Read-only projections over reconciled Notes
OUTPUTS: CMInfo, UserInfo, ProjectView

WHAT THIS LAYER MUST NOT DO:
============================
- Mutate notes or resolver state
- Perform I/O
"""

from .views import (
    CMInfo, UserInfo, ProjectView,
    build_cm_infos, build_dapp_infos, build_user_infos, recent_user_infos,
    build_project_view, RECENT_LIMIT,
)

__all__ = [
    'CMInfo', 'UserInfo', 'ProjectView',
    'build_cm_infos', 'build_dapp_infos', 'build_user_infos', 'recent_user_infos',
    'build_project_view', 'RECENT_LIMIT',
]
