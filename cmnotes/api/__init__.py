"""
Presentation API

RESPONSIBILITY: Read-only HTTP access to reconciled notes and views
ALLOWED INPUTS: Project names and filter parameters
OUTPUTS: JSON renderings of Notes, CMInfo, UserInfo, ProjectIcon

WHAT THIS LAYER MUST NOT DO:
============================
- Reconcile or resolve identities itself
- Write to the ledger
"""
