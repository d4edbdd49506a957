import sys

from nexti18n.cli import main

sys.exit(main())
