"""Run the jctl command line tool."""

from jctl.tool.jctl import main

if __name__ == "__main__":
    main()
