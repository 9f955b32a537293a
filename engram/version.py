"""Version information for Engram.

Read from the installed package metadata (pyproject.toml).
"""

from importlib.metadata import version

__version__ = version("engram")
