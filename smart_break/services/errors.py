"""Common error handling for all services"""

class ServiceError(Exception):
    """Base exception for all service errors"""
    pass

class ProbeError(ServiceError):
    """Raised when an OS fact cannot be obtained"""
    pass

class PersistenceError(ServiceError):
    """Base exception for storage errors"""
    pass

class ConfigError(ServiceError):
    """Base exception for configuration errors"""
    pass

class RunnerError(ServiceError):
    """Base exception for service runner errors"""
    pass
