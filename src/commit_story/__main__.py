"""Allow ``python -m commit_story``."""

import sys

from .cli import main

sys.exit(main())
