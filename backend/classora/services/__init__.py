"""Domain services. Routes stay thin and delegate to these classes."""
