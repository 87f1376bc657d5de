from __future__ import annotations

import sys
from pathlib import Path

# Import icebridge from the working tree so tests never pick up an installed copy.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))
