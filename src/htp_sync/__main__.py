"""Allow ``python -m htp_sync``."""

import sys

from .main import main

sys.exit(main())
