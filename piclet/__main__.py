import sys

from piclet.main import main

sys.exit(main())
