"""Gateway -- configuration, storage, command routing and platform adapters."""
