"""
Domain models — Pydantic types for the orchestrator.

All models are re-exported here for convenient access:

    from terrastack.core.models import Stack, ProjectConfig, Receipt, RunReport
"""

from terrastack.core.models.project import GitSettings, ProjectConfig, RunSettings
from terrastack.core.models.receipt import Receipt, RunReport, StackStatus
from terrastack.core.models.stack import Stack, StackDecl, is_subpath, project_path

__all__ = [
    # project.py
    "GitSettings",
    "ProjectConfig",
    # receipt.py
    "Receipt",
    "RunReport",
    "RunSettings",
    # stack.py
    "Stack",
    "StackDecl",
    "StackStatus",
    "is_subpath",
    "project_path",
]
