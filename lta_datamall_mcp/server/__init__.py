"""HTTP and stdio surfaces of the DataMall MCP server."""
