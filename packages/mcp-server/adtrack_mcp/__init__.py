"""
AdTrack MCP Server - Model Context Protocol tools for attribution.

Exposes the attribution engine to MCP clients:
- Attribute a single conversion or a batch of conversions
- Per-model attribution analysis for a campaign
- List of available attribution models

Usage:
    # Via CLI
    adtrack-mcp

    # Via Python
    from adtrack_mcp import server
    server.main()
"""

__version__ = "0.1.0"
