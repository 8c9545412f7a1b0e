"""
Target module clients

HTTP access to the backend modules, step execution and module metadata.
"""

from .http import ModuleHTTPClient
from .executor import StepExecutor, build_path
from .registry import ModuleMetadata, ModuleEndpoint, EndpointField, get_modules, get_module

__all__ = [
    'ModuleHTTPClient',
    'StepExecutor',
    'build_path',
    'ModuleMetadata',
    'ModuleEndpoint',
    'EndpointField',
    'get_modules',
    'get_module',
]
