"""
reportwatch: explainable incident risk scoring and abuse control.
"""

__version__ = "1.0.0"
