#!/usr/bin/env python3
"""
run_server.py — start the Callsight API from the project root.
Uses callsight_config.json / .env from this directory.

  python run_server.py
  python run_server.py --port 9000
"""

import sys
from pathlib import Path


def main():
    root = Path(__file__).parent
    sys.path.insert(0, str(root))

    from callsight.api import main as api_main
    api_main(["--config-dir", str(root), *sys.argv[1:]])


if __name__ == "__main__":
    main()
