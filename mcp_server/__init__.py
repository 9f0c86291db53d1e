"""FastMCP stdio server exposing Forvm to agents."""
