"""
Anchorline - Hash-anchored file editing and branching session history for coding agents.

Two pieces:
1. An edit engine that shows files as ``line:hash|content`` and applies
   batches of anchored edits atomically, rejecting stale anchors
2. A SQLite session store that keeps conversation turns as a tree with an
   append-only operation log

Usage:
    anchorline init                   # Write anchorline.yml in current repo
    anchorline read FILE              # Show hash-anchored lines
    anchorline check FILE ANCHOR...   # Validate anchors against live content
    anchorline edit FILE OPS.json     # Apply an edit batch
    anchorline session ...            # Inspect and drive session history
    anchorline serve                  # Read-only history API
"""

__version__ = "0.1.0"
__author__ = "Anchorline"
