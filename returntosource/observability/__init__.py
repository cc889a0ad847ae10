"""
Logging, metrics and tracing
"""
