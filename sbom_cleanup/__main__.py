import sys

from sbom_cleanup.main import main

sys.exit(main())
