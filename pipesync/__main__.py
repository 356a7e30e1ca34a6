from pipesync.cli import main

raise SystemExit(main())
