"""JSON-RPC client side."""
