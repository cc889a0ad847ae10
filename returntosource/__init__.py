"""
return-to-source
Moves messages from an error queue back to the queue they failed from
"""

__version__ = "1.0.0"
