"""Fuel network sync engine - scheduled synchronization workflows over versioned API templates."""
