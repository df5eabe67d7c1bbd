import sys

from redbook.cli import main

sys.exit(main())
