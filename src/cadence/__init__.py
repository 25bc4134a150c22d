"""
Cadence - a streaming, tool-calling agent task engine.
"""

__version__ = "0.1.0"
