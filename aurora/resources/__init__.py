"""
Pulumi resources
Hands a resolved plan to the Pulumi engine
"""

from .functions import bind_outputs, declare_plan, resource_name, resource_options

__all__ = [
    "bind_outputs",
    "declare_plan",
    "resource_name",
    "resource_options",
]
