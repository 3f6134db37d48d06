"""
ABAP Documentation Workbench
AI module.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, local stub fallback)
    - export: Markdown / JSON export of generated specifications
"""
