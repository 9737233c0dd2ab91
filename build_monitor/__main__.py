from build_monitor.cli import main

raise SystemExit(main())
