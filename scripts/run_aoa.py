#!/usr/bin/env python
"""
Script to compute the Dissimilarity Index and Area of Applicability.

Author: najahpokkiri
Date: 2025-06-18
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from landcover_aoa.models.aoa import main


if __name__ == "__main__":
    sys.exit(main())
