import sys

from regsync.run import main

sys.exit(main())
