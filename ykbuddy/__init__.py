"""YK Buddy backend services."""
