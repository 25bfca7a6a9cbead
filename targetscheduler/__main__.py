import sys

from targetscheduler.cli.main import main

sys.exit(main())
