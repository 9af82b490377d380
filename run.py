#!/usr/bin/env python3
"""
Launcher script for the game updater.
Run this script to use the updater without installing it.
"""

import sys
import os

# Add the current directory to Python path so we can import gameupdater
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from gameupdater.main import main

if __name__ == "__main__":
    sys.exit(main())
