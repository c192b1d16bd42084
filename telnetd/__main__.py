"""Run the telnetd command line tool, ``python -m telnetd``."""
from .cmdline import main

if __name__ == "__main__":
    main()
