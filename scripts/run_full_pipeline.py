#!/usr/bin/env python
"""
Script to run the complete land-cover classification and AOA pipeline.

Author: najahpokkiri
Date: 2025-06-20
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from landcover_aoa.pipeline import main


if __name__ == "__main__":
    sys.exit(main())
