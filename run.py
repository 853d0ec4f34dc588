#!/usr/bin/env python3
"""Convenience runner for the territory tracking CLI.

Usage:
    python run.py replay my_loop.gpx --city-id london
"""
import logging
import sys

from territory_run.main import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    sys.exit(main())
