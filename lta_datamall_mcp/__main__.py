"""Allow ``python -m lta_datamall_mcp``."""

from lta_datamall_mcp.cli import main

if __name__ == "__main__":
    main()
