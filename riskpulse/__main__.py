"""
Entry point for running riskpulse as a module.

Usage:
    python -m riskpulse status
    python -m riskpulse evaluate --minutes 45 --lines 320 --files 9

This is equivalent to:
    python -m riskpulse.cli.vitals_cli [args]
"""

from riskpulse.cli.vitals_cli import main


if __name__ == "__main__":
    main()
