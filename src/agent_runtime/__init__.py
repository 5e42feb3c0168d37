"""
Agent-Runtime - conversational agent loop with tools, sessions and memory.
"""

__version__ = "0.1.0"
