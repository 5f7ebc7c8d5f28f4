#!/usr/bin/env python3
"""
Upload a directory tree to Google Cloud Storage.

Runs the gcs-publish CLI from a source checkout, without installing the
package. See ``gcs_publish.cli`` for the available flags.

Usage:
    python scripts/upload.py --source dist --target my-site/releases/v2
    python scripts/upload.py --config deploy/upload.yaml --dry-run
"""

import sys
from pathlib import Path

# Add project root to path for imports (before other imports)
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from gcs_publish.cli import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
