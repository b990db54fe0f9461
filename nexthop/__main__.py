"""Entry point for ``python -m nexthop``."""

from nexthop.server import main

if __name__ == "__main__":
    main()
