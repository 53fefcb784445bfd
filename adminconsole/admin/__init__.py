"""Admin API routes and the gate, queries and analytics behind them."""
