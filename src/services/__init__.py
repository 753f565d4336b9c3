"""Task-tree services: conflict resolution, tree snapshots, cascade, history."""
