import sys

from .cli import main

sys.exit(main())  # type: ignore[call-arg]
