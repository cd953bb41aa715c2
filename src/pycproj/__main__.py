from pycproj.cli import main

raise SystemExit(main())
