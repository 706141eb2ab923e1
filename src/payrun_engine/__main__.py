"""``python -m payrun_engine`` runs the operator CLI (``serve`` starts the API)."""

import sys

from payrun_engine.cli import main

if __name__ == "__main__":
    sys.exit(main())
