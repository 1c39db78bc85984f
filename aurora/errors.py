"""
Aurora module errors
Configuration, resolution and apply failures raised by the planning core
"""

from typing import Optional, Sequence


class AuroraModuleError(Exception):
    """Base error for the Aurora cluster module"""


class ConfigurationError(AuroraModuleError):
    """Invalid combination of inputs, raised before planning starts"""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ResolutionError(AuroraModuleError):
    """Cyclic or dangling reference between planned resources"""

    def __init__(self, message: str, cycle: Optional[Sequence[str]] = None):
        self.cycle = list(cycle) if cycle else []
        super().__init__(message)


class ApplyError(AuroraModuleError):
    """A single resource failed to converge"""

    def __init__(self, address: str, operation: str, message: str):
        self.address = address
        self.operation = operation
        super().__init__(f"{operation} {address} failed: {message}")


class OperationTimeout(ApplyError):
    """A resource operation ran past its configured timeout"""

    def __init__(self, address: str, operation: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(address, operation, f"timed out after {timeout_seconds:g}s")


class TransientDriverError(AuroraModuleError):
    """Retryable failure reported by a resource driver (throttling, network)"""
