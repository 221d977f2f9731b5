import sys

from suitebackup.cli import main

sys.exit(main())
