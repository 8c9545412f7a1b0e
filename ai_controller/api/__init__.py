"""
API Routes
"""

from . import chains, executions, modules

__all__ = ['chains', 'executions', 'modules']
