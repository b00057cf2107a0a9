import sys

from nodectl.cli import main

sys.exit(main())
