"""Settings, domain types and logging shared by every layer."""
