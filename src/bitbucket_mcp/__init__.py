"""bitbucket-mcp: Bitbucket Cloud REST API over MCP (stdio) and HTTP."""

__version__ = "0.1.0"
__author__ = "bitbucket-mcp contributors"
