"""
Main entry point for the Amplicon Workflow Router.

This allows the package to be run as a module:
python -m amplicon_router
"""

from .cli.main import main

if __name__ == '__main__':
    main()
