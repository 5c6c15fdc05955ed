"""Allow ``python -m parley``."""

from .app import main

if __name__ == "__main__":
    main()
