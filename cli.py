#!/usr/bin/env python3
"""
Sidecar Annotator - Command Line Interface
Runs the CLI straight from a source checkout
"""

import sys
from pathlib import Path

# Add src directory to Python path
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from sidecar_annotator.cli import main


if __name__ == "__main__":
    sys.exit(main())
