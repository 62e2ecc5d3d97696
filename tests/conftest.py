"""Import paths for the bridge test-suite."""

from __future__ import annotations

import sys
from pathlib import Path

# ``bridge`` lives at the project root and the shared in-memory host doubles
# in ``tests/fakes.py``; both must import without an editable install.
TESTS = Path(__file__).resolve().parent
ROOT = TESTS.parent
for entry in (ROOT, TESTS):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))
