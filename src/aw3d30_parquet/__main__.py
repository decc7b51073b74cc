from aw3d30_parquet.cli import main

raise SystemExit(main())
