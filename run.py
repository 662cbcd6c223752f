import sys

from privacy_shield.cli import main


if __name__ == "__main__":
    sys.exit(main())
