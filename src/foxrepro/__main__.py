"""Allow running as: python -m foxrepro"""

import sys

from .cli import main

sys.exit(main())
