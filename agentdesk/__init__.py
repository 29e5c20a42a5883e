"""
agentdesk - availability scheduling and inbox for real-estate agents.
"""

__version__ = "0.1.0"
