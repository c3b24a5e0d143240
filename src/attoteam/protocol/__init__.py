"""On-disk protocol: record types, team directory layout and atomic IO."""
