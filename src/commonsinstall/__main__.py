"""Allow ``python -m commonsinstall``."""

from commonsinstall.cli import main

if __name__ == "__main__":
    main()
