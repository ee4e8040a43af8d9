import sys

from projecthub.cli import main

sys.exit(main())
