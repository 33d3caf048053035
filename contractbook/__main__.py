import sys

from contractbook.cli import main

sys.exit(main())
