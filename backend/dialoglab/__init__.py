"""DialogLab English coach backend."""
