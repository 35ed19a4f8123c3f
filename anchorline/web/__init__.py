"""Read-only HTTP view over session history."""
