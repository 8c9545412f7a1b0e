"""
AI Controller

Stores declarative chains of HTTP calls against the game modules and
executes them.
"""

__version__ = "1.0.0"
