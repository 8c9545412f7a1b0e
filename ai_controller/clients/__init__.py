"""
Client implementations for the backend modules
"""

from ai_controller.clients.modules import ModuleHTTPClient, StepExecutor

__all__ = ['ModuleHTTPClient', 'StepExecutor']
