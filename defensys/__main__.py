import sys

from defensys.cli import main

sys.exit(main())
