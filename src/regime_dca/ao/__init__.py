"""Order execution and the exchange client."""
