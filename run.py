#!/usr/bin/env python3
"""StackMemory entry point — prints the context store status report."""

import sys
import pathlib

if sys.version_info < (3, 11):
    print(f"ERROR: Python 3.11+ required (found {sys.version_info.major}.{sys.version_info.minor})")
    sys.exit(1)

# Ensure project root is on sys.path
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

from stackmemory.status import main

if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else None)
