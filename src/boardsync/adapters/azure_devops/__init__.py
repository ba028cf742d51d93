"""
Azure DevOps adapter - work item tracking over the REST API.
"""

from .client import AzureDevOpsClient, calculate_delay, get_retry_after


__all__ = ["AzureDevOpsClient", "calculate_delay", "get_retry_after"]
