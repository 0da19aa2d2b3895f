"""Allow ``python -m xcs_diag``."""

import sys

from xcs_diag.cli import main

sys.exit(main())
