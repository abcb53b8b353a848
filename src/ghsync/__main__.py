import sys

from ghsync.cli import main

sys.exit(main())
