"""
boardsync - keep a local story board and Azure DevOps work items in step.
"""

__version__ = "0.3.0"
