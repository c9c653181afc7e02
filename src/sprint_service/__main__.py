"""Allow ``python -m sprint_service``."""

from sprint_service.cli import main

if __name__ == "__main__":
    main()
