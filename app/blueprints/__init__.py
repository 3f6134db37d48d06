"""
ABAP Documentation Workbench
Blueprint registry.

    - workspace_bp: workspaces, uploads, object tree, archive metadata, specs
    - health_bp:    readiness / liveness probes
"""
