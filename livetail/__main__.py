import sys

from livetail.entrypoint import main

sys.exit(main())
