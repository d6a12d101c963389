import sys

from eventsync.main import main

sys.exit(main())
