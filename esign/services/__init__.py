"""Business logic services for Bridge eSign."""
