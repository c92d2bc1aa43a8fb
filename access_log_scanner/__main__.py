import sys

from access_log_scanner.cli import main

sys.exit(main())
