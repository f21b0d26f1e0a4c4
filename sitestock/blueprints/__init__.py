"""Blueprint packages (auth, sites, inventory, admin)."""
