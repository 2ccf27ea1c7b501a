#!/usr/bin/env python3
"""Bank statement ingestion tool.

Entry point script that wraps the package CLI for running from a checkout.

Usage:
    python ingest_statements.py ingest ./downloads/*.csv --account chase-checking
    python ingest_statements.py export --profile ynab --mark -o ynab.csv

For full documentation and options:
    python ingest_statements.py --help
"""

import sys
from pathlib import Path

# Add src to path for development installs
src_path = Path(__file__).parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from statement_ingest.cli import main

if __name__ == "__main__":
    sys.exit(main())
