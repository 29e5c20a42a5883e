"""
Convenience entry point for running agentdesk as a module.

Usage: python -m agentdesk [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()
