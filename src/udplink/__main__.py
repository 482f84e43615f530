import sys

from udplink.cli import main

sys.exit(main())
