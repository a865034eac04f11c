"""Allow ``python -m tcc_manager``."""

from __future__ import annotations

import sys


def main() -> None:
    from tcc_manager import run

    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
