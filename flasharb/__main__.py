import sys

from flasharb.main import main

sys.exit(main())
