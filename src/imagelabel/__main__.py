import sys

from imagelabel.cli import main

sys.exit(main())
