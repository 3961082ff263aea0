import sys

from blaze_tracker.cli import main

sys.exit(main())
